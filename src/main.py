"""
Xero Bridge - Backend for the Xero invoice dashboard
"""
from dotenv import load_dotenv
import os
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Load environment variables before the app reads its configuration
load_dotenv()

from xero_bridge.core import create_app  # noqa: E402

app = create_app()

if __name__ == '__main__':
    port = int(os.getenv('PORT', 8000))
    debug = os.getenv('FLASK_ENV') == 'development'

    logger.info(f"Starting Xero Bridge on port {port} (debug={debug})")
    app.run(host='0.0.0.0', port=port, debug=debug)
