from app.incubator import create_app

app = create_app()
