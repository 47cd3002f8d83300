from app.samrambhaka import create_app

app = create_app()
