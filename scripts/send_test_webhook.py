#!/usr/bin/env python
"""Script de diagnóstico do webhook do SEF.

Envia uma notificação assinada (HMAC SHA-256, timestamp em ms e nonce)
para uma instância local, do mesmo jeito que o SEF faria.

Uso:
    SEF_WEBHOOK_SECRET=... python scripts/send_test_webhook.py X1 ACCEPTANCE
    python scripts/send_test_webhook.py X1 STATUS_CHANGE --status Seen --url http://localhost:8080
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
import uuid

import httpx

from sef_sync.application.webhook_security import compute_signature


def build_payload(sef_id: str, event_type: str, status: str | None) -> dict:
    payload: dict = {
        "eventType": event_type,
        "sefId": sef_id,
        "timestamp": int(time.time() * 1000),
    }
    if event_type == "STATUS_CHANGE":
        payload["status"] = status or "SENT"
    return payload


def main() -> int:
    parser = argparse.ArgumentParser(description="Envia webhook SEF assinado")
    parser.add_argument("sef_id")
    parser.add_argument("event_type")
    parser.add_argument("--status", default=None)
    parser.add_argument("--url", default="http://localhost:8080")
    parser.add_argument("--secret", default=os.environ.get("SEF_WEBHOOK_SECRET", ""))
    args = parser.parse_args()

    body = json.dumps(build_payload(args.sef_id, args.event_type, args.status)).encode()
    headers = {
        "Content-Type": "application/json",
        "X-SEF-Timestamp": str(int(time.time() * 1000)),
        "X-SEF-Nonce": uuid.uuid4().hex,
    }
    if args.secret:
        headers["X-SEF-Signature"] = "sha256=" + compute_signature(body, args.secret)
    else:
        print("⚠️  Sem secret: enviando sem assinatura (só funciona em modo relaxado)")

    response = httpx.post(f"{args.url}/webhooks/sef", content=body, headers=headers, timeout=10)
    print(f"HTTP {response.status_code}: {response.text}")
    return 0 if response.is_success else 1


if __name__ == "__main__":
    sys.exit(main())
