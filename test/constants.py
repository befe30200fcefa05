from pathlib import Path

DATA_DIR = Path(__file__).parent / 'data'
BASE_URL = 'https://api.test-sis.com/v3.0/'
TOKEN_URL = 'https://test-sis.com/oauth/tokens'
