"""
Runtime configuration loaded from the environment (and backend/.env)
"""
import os
from pathlib import Path
from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB connection
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'firearm_tracker')

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

# SAPS firearm status enquiry
STATUS_ENDPOINT = os.environ.get(
    'STATUS_ENDPOINT',
    'https://www.saps.gov.za/services/firearm_status_enquiry.php'
)
SAPS_HOME_URL = os.environ.get('SAPS_HOME_URL', 'https://www.saps.gov.za')
PROXY_TIMEOUT_SECONDS = float(os.environ.get('PROXY_TIMEOUT_SECONDS', '15'))
PROBE_TIMEOUT_SECONDS = float(os.environ.get('PROBE_TIMEOUT_SECONDS', '8'))
USER_AGENT = os.environ.get(
    'USER_AGENT',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:124.0) Gecko/20100101 Firefox/124.0'
)

# Background loops
SERVER_STATUS_INTERVAL_SECONDS = int(os.environ.get('SERVER_STATUS_INTERVAL_SECONDS', str(5 * 60)))
REMINDER_POLL_SECONDS = int(os.environ.get('REMINDER_POLL_SECONDS', '60'))

# Reminders fire at this hour (SAST) on their due day
REMINDER_HOUR_SAST = int(os.environ.get('REMINDER_HOUR_SAST', '9'))

# "push" delivers reminders via Web Push, "none" is the web-only fallback
NOTIFICATIONS_MODE = os.environ.get('NOTIFICATIONS_MODE', 'push').lower()

# VAPID Keys for Web Push Notifications
VAPID_PRIVATE_KEY = os.environ.get('VAPID_PRIVATE_KEY')
VAPID_PUBLIC_KEY = os.environ.get('VAPID_PUBLIC_KEY')
VAPID_CLAIMS_EMAIL = os.environ.get('VAPID_CLAIMS_EMAIL', 'mailto:owner@firearm-tracker.local')
VAPID_KEYS_FILE = ROOT_DIR / 'vapid_keys.json'
