from datetime import timedelta
from pathlib import Path
from dotenv import load_dotenv
import os

load_dotenv(Path(Path(__file__).parent.parent.parent.absolute(), '.env'))

PATH_TO_PROVIDER_CONFIG = Path(
    os.getenv('APISERVER_PROVIDER_CONFIG', Path(Path(__file__).absolute().parent.parent.parent, 'config', 'apiserver.yaml'))
)

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

# seconds, passed as _request_timeout to every kubernetes API call
KUBERNETES_REQUEST_TIMEOUT = float(os.getenv('KUBERNETES_REQUEST_TIMEOUT', '30'))

SHOOT_NOT_READY_REQUEUE_INTERVAL = timedelta(seconds=int(os.getenv('SHOOT_NOT_READY_REQUEUE_SECONDS', '60')))

ADMIN_ACCESS_VALIDITY = timedelta(days=180)
TEMPORARY_ADMIN_KUBECONFIG_VALIDITY = timedelta(hours=1)
