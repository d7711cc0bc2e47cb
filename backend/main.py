from payhold import create_app

app = create_app()
