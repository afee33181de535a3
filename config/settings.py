import os

SERVICE_VERSION = os.getenv('SERVICE_VERSION', '0.1.0')
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

# memory | local | db | s3
STORAGE_BACKEND = os.getenv('STORAGE_BACKEND', 'memory')
LOCAL_STORAGE_PATH = os.getenv('LOCAL_STORAGE_PATH', os.path.join('.', 'data', 'fragments'))
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite://./data/fragments.sqlite3')

S3_ENDPOINT = os.getenv('S3_ENDPOINT', '')
S3_BUCKET = os.getenv('S3_BUCKET', '')
S3_ACCESS_KEY = os.getenv('S3_ACCESS_KEY', '')
S3_SECRET_KEY = os.getenv('S3_SECRET_KEY', '')
S3_REGION = os.getenv('S3_REGION') or None

API_URL = os.getenv('API_URL', 'http://localhost:8080').rstrip('/')
MAX_FRAGMENT_SIZE = int(os.getenv('MAX_FRAGMENT_SIZE', str(5 * 1024 * 1024)))
# Set by the authenticating proxy in front of the service
OWNER_HEADER = os.getenv('OWNER_HEADER', 'X-Authenticated-User')
