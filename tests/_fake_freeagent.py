"""In-memory stand-in for the FreeAgent API, served through ``httpx.MockTransport``."""

from __future__ import annotations

import base64
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

import httpx

API_URL = "https://api.sandbox.freeagent.com/v2"

_SINGULAR = {"contacts": "contact", "projects": "project", "invoices": "invoice"}


class FakeFreeAgent:
    def __init__(self) -> None:
        self.resources: Dict[str, List[Dict[str, Any]]] = {
            "contacts": [],
            "projects": [],
            "invoices": [],
        }
        self.pdfs: Dict[str, Any] = {}
        self.failures: Dict[str, int] = {}
        self.requests: List[httpx.Request] = []
        self.token_forms: List[Dict[str, str]] = []
        self.token_status = 200
        self._issued = 0

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # Fixtures

    def add_contact(self, contact_id: int, **fields: Any) -> Dict[str, Any]:
        payload = {
            "url": f"{API_URL}/contacts/{contact_id}",
            "first_name": "Ada",
            "last_name": f"Contact{contact_id}",
            "status": "active",
            **fields,
        }
        self.resources["contacts"].append(payload)
        return payload

    def add_project(
        self, project_id: int, contact: Optional[Dict[str, Any]] = None, **fields: Any
    ) -> Dict[str, Any]:
        payload = {
            "url": f"{API_URL}/projects/{project_id}",
            "name": f"Project {project_id}",
            "status": "Active",
            **fields,
        }
        if contact is not None:
            payload["contact"] = contact["url"]
        self.resources["projects"].append(payload)
        return payload

    def add_invoice(
        self,
        invoice_id: int,
        contact: Optional[Dict[str, Any]] = None,
        project: Optional[Dict[str, Any]] = None,
        **fields: Any,
    ) -> Dict[str, Any]:
        payload = {
            "url": f"{API_URL}/invoices/{invoice_id}",
            "reference": f"INV-{invoice_id:03d}",
            "status": "Open",
            "dated_on": f"2024-01-{(invoice_id % 28) + 1:02d}",
            "due_on": "2099-01-31",
            "net_value": "100.00",
            "sales_tax_value": "20.00",
            "total_value": "120.00",
            "currency": "GBP",
            **fields,
        }
        if contact is not None:
            payload["contact"] = contact["url"]
        if project is not None:
            payload["project"] = project["url"]
        self.resources["invoices"].append(payload)
        return payload

    def add_pdf(self, invoice_id: int, content: bytes) -> None:
        self.pdfs[str(invoice_id)] = {
            "pdf": {"content": base64.b64encode(content).decode("ascii")}
        }

    def calls(self, path: str) -> int:
        return sum(1 for request in self.requests if self._relative(request) == path)

    # Transport

    @staticmethod
    def _relative(request: httpx.Request) -> str:
        return request.url.path.split("/v2/", 1)[-1]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = self._relative(request)

        if path in self.failures:
            return httpx.Response(
                self.failures[path], json={"errors": [{"message": "failure"}]}
            )
        if path == "token_endpoint":
            return self._token(request)

        parts = path.split("/")
        kind = parts[0]
        if kind not in self.resources:
            return httpx.Response(404, json={"errors": [{"message": "not found"}]})
        if len(parts) == 1:
            return self._list(kind, request)
        if len(parts) == 2:
            return self._single(kind, parts[1])
        if len(parts) == 3 and kind == "invoices" and parts[2] == "pdf":
            body = self.pdfs.get(parts[1])
            if body is None:
                return httpx.Response(404, json={})
            return httpx.Response(200, json=body)
        return httpx.Response(404, json={})

    def _list(self, kind: str, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        records = self.resources[kind]
        contact = params.get("contact")
        if contact:
            records = [record for record in records if record.get("contact") == contact]
        page = int(params.get("page", 1))
        per_page = int(params.get("per_page", 100))
        start = (page - 1) * per_page
        return httpx.Response(200, json={kind: records[start : start + per_page]})

    def _single(self, kind: str, resource_id: str) -> httpx.Response:
        for record in self.resources[kind]:
            if record["url"].rsplit("/", 1)[-1] == resource_id:
                return httpx.Response(200, json={_SINGULAR[kind]: record})
        return httpx.Response(404, json={})

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = {key: values[0] for key, values in parse_qs(request.content.decode()).items()}
        self.token_forms.append(form)
        if self.token_status != 200:
            return httpx.Response(self.token_status, json={"error": "invalid_grant"})
        self._issued += 1
        return httpx.Response(
            200,
            json={
                "access_token": f"access-{self._issued}",
                "refresh_token": f"refresh-{self._issued}",
                "expires_in": 3600,
                "token_type": "bearer",
            },
        )


__all__ = ["API_URL", "FakeFreeAgent"]
