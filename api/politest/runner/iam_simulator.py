"""AWS IAM policy simulator backed by ``SimulateCustomPolicy``."""

from __future__ import annotations

import logging
import re
from typing import Any

from politest.policy.provenance import statement_at_line
from politest.runner.protocol import SimulationRequest, SimulationResult

logger = logging.getLogger(__name__)

_INPUT_ID_RE = re.compile(r"^(?P<list>PolicyInputList|PermissionsBoundaryPolicyInputList)\.(?P<index>\d+)$")


class IamPolicySimulator:
    """Calls the IAM policy simulator, one action per request.

    Credentials and region come from the standard boto3 chain unless a
    client or session is injected. Errors from the API are not caught.
    """

    def __init__(
        self,
        client: Any | None = None,
        *,
        session: Any | None = None,  # boto3.session.Session | None
        botocore_config: Any | None = None,  # botocore.config.Config | None
    ) -> None:
        self._client = client if client is not None else self._build_client(session, botocore_config)

    @staticmethod
    def _build_client(session: Any | None, cfg: Any | None) -> Any:
        import boto3

        params: dict[str, Any] = {}
        if cfg is not None:
            params["config"] = cfg
        if session is not None:
            return session.client("iam", **params)
        return boto3.client("iam", **params)

    @staticmethod
    def build_input(request: SimulationRequest) -> dict[str, Any]:
        """``SimulateCustomPolicy`` keyword arguments for a request."""
        kwargs: dict[str, Any] = {
            "PolicyInputList": list(request.policy_documents),
            "ActionNames": [request.action],
            "ContextEntries": [entry.to_simulator_dict() for entry in request.context_entries],
        }
        if request.resource_arns:
            kwargs["ResourceArns"] = list(request.resource_arns)
        if request.permissions_boundary_documents:
            kwargs["PermissionsBoundaryPolicyInputList"] = list(request.permissions_boundary_documents)
        if request.resource_policy:
            kwargs["ResourcePolicy"] = request.resource_policy
        if request.caller_arn:
            kwargs["CallerArn"] = request.caller_arn
        if request.resource_owner:
            kwargs["ResourceOwner"] = request.resource_owner
        if request.resource_handling_option:
            kwargs["ResourceHandlingOption"] = request.resource_handling_option
        return kwargs

    def simulate(self, request: SimulationRequest) -> SimulationResult:
        kwargs = self.build_input(request)
        logger.debug("SimulateCustomPolicy %s on %s", request.action, kwargs.get("ResourceArns", ["*"]))
        response = self._client.simulate_custom_policy(**kwargs)

        results = response.get("EvaluationResults") or []
        raw = {k: v for k, v in response.items() if k != "ResponseMetadata"}
        if not results:
            return SimulationResult(decision=None, raw=raw)

        first = results[0]
        statements = list(first.get("MatchedStatements") or [])
        if not statements:
            for specific in first.get("ResourceSpecificResults") or []:
                statements.extend(specific.get("MatchedStatements") or [])

        tokens: list[str] = []
        for statement in statements:
            token = statement_token(statement, request)
            if token and token not in tokens:
                tokens.append(token)
        return SimulationResult(decision=first.get("EvalDecision"), matched_statements=tuple(tokens), raw=raw)


def _submitted_document(source_id: str, request: SimulationRequest) -> str | None:
    if source_id == "ResourcePolicy":
        return request.resource_policy
    m = _INPUT_ID_RE.match(source_id)
    if not m:
        return None
    documents = (
        request.policy_documents
        if m.group("list") == "PolicyInputList"
        else request.permissions_boundary_documents
    )
    index = int(m.group("index")) - 1
    if 0 <= index < len(documents):
        return documents[index]
    return None


def statement_token(statement: dict[str, Any], request: SimulationRequest) -> str | None:
    """Tracking ``Sid`` of a matched statement, else its ``SourcePolicyId``.

    The simulator identifies a matched statement by the document it came from
    and its start position in the submitted text; the statement found at that
    line carries the tracking token.
    """
    source_id = statement.get("SourcePolicyId")
    if not source_id:
        return None
    line = (statement.get("StartPosition") or {}).get("Line")
    document = _submitted_document(source_id, request)
    if document and line:
        found = statement_at_line(document, int(line))
        if found is not None and isinstance(found.get("Sid"), str) and found["Sid"]:
            return found["Sid"]
    return source_id
