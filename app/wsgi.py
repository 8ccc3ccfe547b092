from app.finsync import create_app

app = create_app()
