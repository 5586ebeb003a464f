import os
import tempfile

# Must be set before any entro module builds the engine.
_DB_DIR = tempfile.mkdtemp(prefix="entro-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ.setdefault("TICKET_SIGNING_SECRET", "test-ticket-signing-secret")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("PUBLIC_BASE_URL", "https://tickets.example.nl")
os.environ["ENTRO_ENV"] = "test"
