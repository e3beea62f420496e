from clockspine.cli import app

app()
