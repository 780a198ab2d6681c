from sagaforge import create_app

app = create_app()
