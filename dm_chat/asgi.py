from dm_chat.main import create_app


app = create_app()
