from portail import create_app

app = create_app()
