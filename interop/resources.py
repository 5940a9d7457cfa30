"""
FSPIOP resource wrappers.

Thin mappings from call parameters to ``RequestExecutor.execute``: each
method picks the resource type, the HTTP method and the path, and marks
whether a destination participant is mandatory. All of them return the
executor's ``ExecutionResult`` and raise its errors unchanged.

Error callbacks (``*_error``) accept either an ``FSPIOPError`` or an
``errorInformation`` body:

    requests = InteropRequests(executor)
    await requests.put_parties_error(
        "MSISDN", "123456789", None,
        FSPIOPError(api_error_code("3204")),
        destination="payerfsp",
    )
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Union

from interop.errors import FSPIOPError
from interop.executor import RequestExecutor
from interop.models import ExecutionResult

ErrorBody = Union[FSPIOPError, Dict[str, Any]]


def error_body(error: ErrorBody) -> Dict[str, Any]:
    if isinstance(error, FSPIOPError):
        return error.to_api_error_object()
    return error


def _party_path(resource: str, id_type: str, id_value: str, id_sub_value: Optional[str]) -> str:
    path = f"/{resource}/{id_type}/{id_value}"
    if id_sub_value:
        path = f"{path}/{id_sub_value}"
    return path


class _Requests:
    def __init__(self, executor: RequestExecutor) -> None:
        self.executor = executor

    async def _get(self, path: str, resource_type: str, destination: Optional[str],
                   require_destination: bool = False) -> ExecutionResult:
        return await self.executor.execute(
            resource_type, "GET", path,
            destination=destination, require_destination=require_destination,
        )

    async def _post(self, path: str, resource_type: str, body: Any, destination: Optional[str],
                    require_destination: bool = True) -> ExecutionResult:
        return await self.executor.execute(
            resource_type, "POST", path, body=body,
            destination=destination, require_destination=require_destination,
        )

    async def _put(self, path: str, resource_type: str, body: Any, destination: Optional[str],
                   require_destination: bool = True) -> ExecutionResult:
        return await self.executor.execute(
            resource_type, "PUT", path, body=body,
            destination=destination, require_destination=require_destination,
        )

    async def _patch(self, path: str, resource_type: str, body: Any, destination: Optional[str],
                     require_destination: bool = True) -> ExecutionResult:
        return await self.executor.execute(
            resource_type, "PATCH", path, body=body,
            destination=destination, require_destination=require_destination,
        )


class InteropRequests(_Requests):
    """Core FSPIOP calls: parties, participants, quotes, transfers, authorizations."""

    # parties

    async def get_parties(self, id_type: str, id_value: str, id_sub_value: Optional[str] = None,
                          destination: Optional[str] = None) -> ExecutionResult:
        return await self._get(_party_path("parties", id_type, id_value, id_sub_value), "parties", destination)

    async def put_parties(self, id_type: str, id_value: str, id_sub_value: Optional[str],
                          body: Dict[str, Any], destination: str) -> ExecutionResult:
        return await self._put(_party_path("parties", id_type, id_value, id_sub_value), "parties",
                               body, destination)

    async def put_parties_error(self, id_type: str, id_value: str, id_sub_value: Optional[str],
                                error: ErrorBody, destination: str) -> ExecutionResult:
        path = _party_path("parties", id_type, id_value, id_sub_value) + "/error"
        return await self._put(path, "parties", error_body(error), destination)

    # participants

    async def post_participants(self, body: Dict[str, Any],
                                destination: Optional[str] = None) -> ExecutionResult:
        return await self._post("/participants", "participants", body, destination,
                                require_destination=False)

    async def put_participants(self, id_type: str, id_value: str, id_sub_value: Optional[str],
                               body: Dict[str, Any], destination: Optional[str] = None) -> ExecutionResult:
        return await self._put(_party_path("participants", id_type, id_value, id_sub_value),
                               "participants", body, destination, require_destination=False)

    async def put_participants_error(self, id_type: str, id_value: str, id_sub_value: Optional[str],
                                     error: ErrorBody, destination: Optional[str] = None) -> ExecutionResult:
        path = _party_path("participants", id_type, id_value, id_sub_value) + "/error"
        return await self._put(path, "participants", error_body(error), destination,
                               require_destination=False)

    # quotes

    async def post_quotes(self, quote_request: Dict[str, Any], destination: str) -> ExecutionResult:
        return await self._post("/quotes", "quotes", quote_request, destination)

    async def put_quotes(self, quote_id: str, quote_response: Dict[str, Any],
                         destination: str) -> ExecutionResult:
        return await self._put(f"/quotes/{quote_id}", "quotes", quote_response, destination)

    async def put_quotes_error(self, quote_id: str, error: ErrorBody, destination: str) -> ExecutionResult:
        return await self._put(f"/quotes/{quote_id}/error", "quotes", error_body(error), destination)

    # transfers

    async def post_transfers(self, prepare: Dict[str, Any], destination: str) -> ExecutionResult:
        return await self._post("/transfers", "transfers", prepare, destination)

    async def put_transfers(self, transfer_id: str, fulfilment: Dict[str, Any],
                            destination: str) -> ExecutionResult:
        return await self._put(f"/transfers/{transfer_id}", "transfers", fulfilment, destination)

    async def patch_transfers(self, transfer_id: str, body: Dict[str, Any],
                              destination: str) -> ExecutionResult:
        return await self._patch(f"/transfers/{transfer_id}", "transfers", body, destination)

    async def put_transfers_error(self, transfer_id: str, error: ErrorBody,
                                  destination: str) -> ExecutionResult:
        return await self._put(f"/transfers/{transfer_id}/error", "transfers", error_body(error), destination)

    # transaction requests

    async def post_transaction_requests(self, body: Dict[str, Any], destination: str) -> ExecutionResult:
        return await self._post("/transactionRequests", "transactionRequests", body, destination)

    async def put_transaction_requests(self, transaction_request_id: str, body: Dict[str, Any],
                                       destination: str) -> ExecutionResult:
        return await self._put(f"/transactionRequests/{transaction_request_id}", "transactionRequests",
                               body, destination)

    # authorizations

    async def post_authorizations(self, body: Dict[str, Any], destination: str) -> ExecutionResult:
        return await self._post("/authorizations", "authorizations", body, destination)

    async def put_authorizations(self, transaction_request_id: str, body: Dict[str, Any],
                                 destination: str) -> ExecutionResult:
        return await self._put(f"/authorizations/{transaction_request_id}", "authorizations",
                               body, destination)

    async def put_authorizations_error(self, transaction_request_id: str, error: ErrorBody,
                                       destination: str) -> ExecutionResult:
        return await self._put(f"/authorizations/{transaction_request_id}/error", "authorizations",
                               error_body(error), destination)


class ThirdpartyRequests(_Requests):
    """Third-party initiated payment (PISP) calls: consents and thirdparty requests."""

    # consents

    async def post_consents(self, body: Dict[str, Any], destination: str) -> ExecutionResult:
        return await self._post("/consents", "consents", body, destination)

    async def put_consents(self, consent_id: str, body: Dict[str, Any], destination: str) -> ExecutionResult:
        return await self._put(f"/consents/{consent_id}", "consents", body, destination)

    async def patch_consents(self, consent_id: str, body: Dict[str, Any], destination: str) -> ExecutionResult:
        return await self._patch(f"/consents/{consent_id}", "consents", body, destination)

    async def put_consents_error(self, consent_id: str, error: ErrorBody, destination: str) -> ExecutionResult:
        return await self._put(f"/consents/{consent_id}/error", "consents", error_body(error), destination)

    # consentRequests

    async def post_consent_requests(self, body: Dict[str, Any], destination: str) -> ExecutionResult:
        return await self._post("/consentRequests", "consentRequests", body, destination)

    async def put_consent_requests(self, consent_request_id: str, body: Dict[str, Any],
                                   destination: str) -> ExecutionResult:
        return await self._put(f"/consentRequests/{consent_request_id}", "consentRequests", body, destination)

    async def patch_consent_requests(self, consent_request_id: str, body: Dict[str, Any],
                                     destination: str) -> ExecutionResult:
        return await self._patch(f"/consentRequests/{consent_request_id}", "consentRequests", body, destination)

    # authorizations

    async def post_authorizations(self, body: Dict[str, Any], destination: str) -> ExecutionResult:
        return await self._post("/authorizations", "authorizations", body, destination)

    # thirdpartyRequests/transactions

    async def get_thirdparty_requests_transactions(self, transaction_request_id: str,
                                                   destination: str) -> ExecutionResult:
        return await self._get(f"/thirdpartyRequests/transactions/{transaction_request_id}",
                               "thirdpartyRequests", destination, require_destination=True)

    async def post_thirdparty_requests_transactions(self, body: Dict[str, Any],
                                                    destination: str) -> ExecutionResult:
        return await self._post("/thirdpartyRequests/transactions", "thirdpartyRequests", body, destination)

    async def put_thirdparty_requests_transactions(self, transaction_request_id: str, body: Dict[str, Any],
                                                   destination: str) -> ExecutionResult:
        return await self._put(f"/thirdpartyRequests/transactions/{transaction_request_id}",
                               "thirdpartyRequests", body, destination)

    async def put_thirdparty_requests_transactions_error(self, transaction_request_id: str, error: ErrorBody,
                                                         destination: str) -> ExecutionResult:
        return await self._put(f"/thirdpartyRequests/transactions/{transaction_request_id}/error",
                               "thirdpartyRequests", error_body(error), destination)

    async def post_thirdparty_requests_transactions_authorizations(
        self, transaction_request_id: str, body: Dict[str, Any], destination: str,
    ) -> ExecutionResult:
        return await self._post(f"/thirdpartyRequests/transactions/{transaction_request_id}/authorizations",
                                "thirdpartyRequests", body, destination)

    async def put_thirdparty_requests_transactions_authorizations(
        self, transaction_request_id: str, body: Dict[str, Any], destination: str,
    ) -> ExecutionResult:
        return await self._put(f"/thirdpartyRequests/transactions/{transaction_request_id}/authorizations",
                               "thirdpartyRequests", body, destination)

    async def put_thirdparty_requests_transactions_authorizations_error(
        self, transaction_request_id: str, error: ErrorBody, destination: str,
    ) -> ExecutionResult:
        return await self._put(
            f"/thirdpartyRequests/transactions/{transaction_request_id}/authorizations/error",
            "thirdpartyRequests", error_body(error), destination,
        )
