# campusvote/audit/audit_logger.py

import os
import json
import hashlib
import base64
import logging
import threading
from datetime import datetime, timezone
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives import serialization

# Append-only audit trail of ballot and manifesto events. Each JSON line is
# hash-chained to the previous one and signed with Ed25519.

logger = logging.getLogger(__name__)


class AuditLogger:
    def __init__(self, log_dir='logs', signing_key_pem=None):
        self.log_dir = log_dir
        self.log_file = os.path.join(log_dir, 'audit.log')
        self.previous_hash = None
        self._lock = threading.Lock()

        os.makedirs(log_dir, exist_ok=True)

        if signing_key_pem:
            self.signing_key = serialization.load_pem_private_key(signing_key_pem.encode(), password=None)
        else:
            # Entries signed with a per-process key cannot be verified after a restart
            logger.warning("AUDIT_SIGNING_KEY_PEM is not set; signing the audit log with an ephemeral key")
            self.signing_key = Ed25519PrivateKey.generate()
        self._load_previous_hash()

    def _load_previous_hash(self):
        if not os.path.exists(self.log_file):
            return
        with open(self.log_file, 'r') as f:
            lines = [line for line in f.readlines() if line.strip()]
        if lines:
            try:
                self.previous_hash = json.loads(lines[-1]).get('hash')
            except ValueError:
                logger.warning("Audit log tail is not valid JSON; starting a new chain")
                self.previous_hash = None

    def log_event(self, event_type, data, actor_id=None):
        """Append one event. Failures are logged and never propagate to the caller."""
        with self._lock:
            try:
                log_entry = {
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "event_type": event_type,
                    "data": data,
                    "actor_id": actor_id,
                    "previous_hash": self.previous_hash,
                }
                entry_json = json.dumps(log_entry, sort_keys=True, default=str)
                entry_hash = hashlib.sha256(entry_json.encode()).hexdigest()
                log_entry['hash'] = entry_hash

                signature = self.signing_key.sign(entry_json.encode())
                log_entry['signature'] = base64.b64encode(signature).decode()

                with open(self.log_file, 'a') as f:
                    f.write(json.dumps(log_entry, default=str) + "\n")

                self.previous_hash = entry_hash
            except (OSError, TypeError, ValueError) as e:
                logger.error("Audit log write failed for %s: %s", event_type, e)

    def verify_log_integrity(self):
        if not os.path.exists(self.log_file):
            return True
        public_key = self.signing_key.public_key()
        previous_hash = None
        try:
            with open(self.log_file, 'r') as f:
                for line in f:
                    if not line.strip():
                        continue
                    log_entry = json.loads(line)
                    if log_entry.get('previous_hash') != previous_hash:
                        return False
                    entry_copy = dict(log_entry)
                    signature = base64.b64decode(entry_copy.pop('signature'))
                    entry_hash = entry_copy.pop('hash')
                    entry_json = json.dumps(entry_copy, sort_keys=True, default=str).encode()
                    if hashlib.sha256(entry_json).hexdigest() != entry_hash:
                        return False
                    public_key.verify(signature, entry_json)
                    previous_hash = entry_hash
        except Exception:
            # Any malformed, unsigned or mis-signed line breaks the chain
            return False
        return True
