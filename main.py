from kasi import create_app

app = create_app()
