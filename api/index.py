from mangum import Mangum
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from taskledger.api import create_app
from taskledger.logging_utils import setup_logging
from taskledger.config import Settings

settings = Settings.from_env()
setup_logging(settings.log_level)

# Serverless deployments get no bot polling; notifications stay off.
app = create_app(settings=settings)

handler = Mangum(app)
