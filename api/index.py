from mangum import Mangum
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ledger.api import create_app
from ledger.service import LedgerService

ledger_service = LedgerService()

app = create_app(ledger_service, root_path="/api")

handler = Mangum(app)
