# module paycore.app
from paycore.app_setup.factory import create_app

app = create_app()
