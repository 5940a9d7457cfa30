"""ISO 20022 JSON mappings for FSPIOP message bodies.

Each supported ``(resource_type, variant)`` pair has one ``DialectMapping``:
a ``to_alternate`` function (FSPIOP -> ISO 20022), a ``to_native`` function
(ISO 20022 -> FSPIOP), and the list of FSPIOP field paths that survive the
round trip unchanged.

Variants:
  - ``post``       POST /<resource>
  - ``put``        PUT /<resource>/<id>
  - ``put_error``  PUT /<resource>/<id>/error
  - ``patch``      PATCH /<resource>/<id>

Message shapes follow the ISO 20022 business messages used for each leg:

  parties   put        acmt.024 (identification verification report)
  parties   put_error  acmt.024 with ``Vrfctn = false``
  quotes    post       pacs.081 (quote request)
  quotes    put        pacs.082 (quote response)
  transfers post       pacs.008 (FI to FI customer credit transfer)
  transfers put/patch  pacs.002 (payment status report)
  *         put_error  pacs.002 with a status reason

Fields that have no ISO 20022 counterpart are dropped on the way out, so the
ISO 20022 -> FSPIOP direction only restores the fields listed in
``lossless``. Participants, authorizations, transaction requests and the
third-party resources have no mapping; their bodies travel unchanged.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from interop.errors import API_ERROR_CODES


@dataclass(frozen=True)
class MessageContext:
    """Per-call facts that are not part of the FSPIOP body."""

    source: str = ""
    destination: str = ""
    created_at: str = ""
    path: str = ""

    def path_ids(self, resource_type: str) -> Tuple[str, ...]:
        """Path segments after ``/<resource_type>``, without a trailing ``error``."""
        parts = [p for p in self.path.split("/") if p]
        if resource_type in parts:
            parts = parts[parts.index(resource_type) + 1:]
        if parts and parts[-1] == "error":
            parts = parts[:-1]
        return tuple(parts)


Converter = Callable[[Dict[str, Any], MessageContext], Dict[str, Any]]


@dataclass(frozen=True)
class DialectMapping:
    resource_type: str
    variant: str
    message: str
    to_alternate: Converter
    to_native: Converter
    lossless: Tuple[str, ...]
    roots: Tuple[str, ...] = ()

    def carries(self, body: Dict[str, Any]) -> bool:
        """Whether ``body`` has one of this message's top-level elements."""
        return any(root in body for root in self.roots)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def dig(obj: Any, path: str) -> Any:
    """Follow a dotted path through nested dicts; ``None`` when any hop is missing."""
    cur = obj
    for key in path.split("."):
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _prune(obj: Any) -> Any:
    """Drop ``None`` values and the empty dicts they leave behind."""
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            v = _prune(v)
            if v is None or v == {}:
                continue
            out[k] = v
        return out
    if isinstance(obj, list):
        return [_prune(x) for x in obj]
    return obj


def message_id(body: Dict[str, Any]) -> str:
    """Deterministic MsgId (max 35 chars) derived from the FSPIOP body."""
    digest = hashlib.sha256(json.dumps(body, sort_keys=True, default=str).encode("utf-8"))
    return digest.hexdigest()[:32]


def _agent(fsp_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not fsp_id:
        return None
    return {"FinInstnId": {"Othr": {"Id": fsp_id}}}


def _agent_id(agent: Any) -> Optional[str]:
    return dig(agent, "FinInstnId.Othr.Id")


def _amount_to_iso(money: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(money, dict):
        return None
    return {"Ccy": money.get("currency"), "ActiveCurrencyAndAmount": money.get("amount")}


def _amount_to_native(money: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(money, dict):
        return None
    return {"currency": money.get("Ccy"), "amount": money.get("ActiveCurrencyAndAmount")}


def _party_to_iso(party: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(party, dict):
        return None
    info = party.get("partyIdInfo") or {}
    return {
        "Nm": party.get("name"),
        "Id": {"PrvtId": {"Othr": {
            "SchmeNm": {"Prtry": info.get("partyIdType")},
            "Id": info.get("partyIdentifier"),
            "Issr": info.get("partySubIdOrType"),
        }}},
    }


def _party_to_native(party: Any, agent: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(party, dict):
        return None
    other = dig(party, "Id.PrvtId.Othr") or {}
    return {
        "partyIdInfo": {
            "partyIdType": dig(other, "SchmeNm.Prtry"),
            "partyIdentifier": other.get("Id"),
            "partySubIdOrType": other.get("Issr"),
            "fspId": _agent_id(agent),
        },
        "name": party.get("Nm"),
    }


def _group_header(body: Dict[str, Any], ctx: MessageContext, **extra: Any) -> Dict[str, Any]:
    header = {"MsgId": message_id(body), "CreDtTm": ctx.created_at}
    header.update(extra)
    return header


def _assignment(body: Dict[str, Any], ctx: MessageContext) -> Dict[str, Any]:
    return {
        "MsgId": message_id(body),
        "CreDtTm": ctx.created_at,
        "Assgnr": {"Agt": _agent(ctx.source)},
        "Assgne": {"Agt": _agent(ctx.destination)},
    }


def _error_native(code: Any) -> Dict[str, Any]:
    known = API_ERROR_CODES.get(str(code)) if code is not None else None
    return {"errorInformation": {
        "errorCode": code,
        "errorDescription": known.message if known else "",
    }}


# ---------------------------------------------------------------------------
# parties
# ---------------------------------------------------------------------------


def _party_key(info: Dict[str, Any]) -> str:
    parts = [info.get("partyIdType"), info.get("partyIdentifier"), info.get("partySubIdOrType")]
    return "/".join(str(p) for p in parts if p)


def parties_put_to_iso(body: Dict[str, Any], ctx: MessageContext) -> Dict[str, Any]:
    party = body.get("party") or {}
    info = party.get("partyIdInfo") or {}
    currencies = party.get("supportedCurrencies") or []
    return _prune({
        "Assgnmt": _assignment(body, ctx),
        "Rpt": {
            "Vrfctn": True,
            "OrgnlId": _party_key(info) or "/".join(ctx.path_ids("parties")),
            "UpdtdPtyAndAcctId": {
                "Pty": _party_to_iso(party),
                "Agt": _agent(info.get("fspId")),
                "Acct": {"Ccy": currencies[0]} if currencies else None,
            },
        },
    })


def parties_put_to_native(body: Dict[str, Any], ctx: MessageContext) -> Dict[str, Any]:
    updated = dig(body, "Rpt.UpdtdPtyAndAcctId") or {}
    party = _party_to_native(updated.get("Pty") or {}, updated.get("Agt")) or {}
    info = party["partyIdInfo"]
    if not info.get("partyIdType") or not info.get("partyIdentifier"):
        orig = str(dig(body, "Rpt.OrgnlId") or "").split("/")
        keys = ("partyIdType", "partyIdentifier", "partySubIdOrType")
        for key, value in zip(keys, orig):
            if not info.get(key):
                info[key] = value or None
    currency = dig(updated, "Acct.Ccy")
    if currency:
        party["supportedCurrencies"] = [currency]
    return _prune({"party": party})


def parties_error_to_iso(body: Dict[str, Any], ctx: MessageContext) -> Dict[str, Any]:
    return _prune({
        "Assgnmt": _assignment(body, ctx),
        "Rpt": {
            "Vrfctn": False,
            "OrgnlId": "/".join(ctx.path_ids("parties")),
            "Rsn": {"Cd": dig(body, "errorInformation.errorCode")},
        },
    })


def parties_error_to_native(body: Dict[str, Any], ctx: MessageContext) -> Dict[str, Any]:
    return _prune(_error_native(dig(body, "Rpt.Rsn.Cd")))


# ---------------------------------------------------------------------------
# quotes
# ---------------------------------------------------------------------------


def quotes_post_to_iso(body: Dict[str, Any], ctx: MessageContext) -> Dict[str, Any]:
    payer = body.get("payer") or {}
    payee = body.get("payee") or {}
    return _prune({
        "GrpHdr": _group_header(
            body, ctx,
            NbOfTxs="1",
            SttlmInf={"SttlmMtd": "CLRG"},
            PmtInstrXpryDtTm=body.get("expiration"),
        ),
        "CdtTrfTxInf": {
            "PmtId": {
                "TxId": body.get("quoteId"),
                "EndToEndId": body.get("transactionId"),
                "InstrId": body.get("transactionRequestId"),
            },
            "Dbtr": _party_to_iso(payer),
            "DbtrAgt": _agent(dig(payer, "partyIdInfo.fspId")),
            "Cdtr": _party_to_iso(payee),
            "CdtrAgt": _agent(dig(payee, "partyIdInfo.fspId")),
            "IntrBkSttlmAmt": _amount_to_iso(body.get("amount")),
            "ChrgBr": "CRED" if body.get("amountType") == "RECEIVE" else "DEBT",
            "Purp": {"Prtry": dig(body, "transactionType.scenario")},
            "InstrForCdtrAgt": {"InstrInf": body.get("note")},
        },
    })


def quotes_post_to_native(body: Dict[str, Any], ctx: MessageContext) -> Dict[str, Any]:
    tx = body.get("CdtTrfTxInf") or {}
    return _prune({
        "quoteId": dig(tx, "PmtId.TxId"),
        "transactionId": dig(tx, "PmtId.EndToEndId"),
        "transactionRequestId": dig(tx, "PmtId.InstrId"),
        "payee": _party_to_native(tx.get("Cdtr"), tx.get("CdtrAgt")),
        "payer": _party_to_native(tx.get("Dbtr"), tx.get("DbtrAgt")),
        "amountType": "RECEIVE" if tx.get("ChrgBr") == "CRED" else "SEND",
        "amount": _amount_to_native(tx.get("IntrBkSttlmAmt")),
        "transactionType": {
            "scenario": dig(tx, "Purp.Prtry"),
            "initiator": "PAYER",
            "initiatorType": "CONSUMER",
        },
        "note": dig(tx, "InstrForCdtrAgt.InstrInf"),
        "expiration": dig(body, "GrpHdr.PmtInstrXpryDtTm"),
    })


def quotes_put_to_iso(body: Dict[str, Any], ctx: MessageContext) -> Dict[str, Any]:
    ids = ctx.path_ids("quotes")
    return _prune({
        "GrpHdr": _group_header(
            body, ctx,
            NbOfTxs="1",
            SttlmInf={"SttlmMtd": "CLRG"},
            PmtInstrXpryDtTm=body.get("expiration"),
        ),
        "CdtTrfTxInf": {
            "PmtId": {"TxId": ids[0] if ids else None},
            "IntrBkSttlmAmt": _amount_to_iso(body.get("transferAmount")),
            "InstdAmt": _amount_to_iso(body.get("payeeReceiveAmount")),
            "ChrgsInf": {
                "Amt": _amount_to_iso(body.get("payeeFspFee")),
                "Cmssn": _amount_to_iso(body.get("payeeFspCommission")),
            },
            "VrfctnOfTerms": {
                "IlpV4PrepPacket": body.get("ilpPacket"),
                "Sh256Sgntr": body.get("condition"),
            },
        },
    })


def quotes_put_to_native(body: Dict[str, Any], ctx: MessageContext) -> Dict[str, Any]:
    tx = body.get("CdtTrfTxInf") or {}
    return _prune({
        "transferAmount": _amount_to_native(tx.get("IntrBkSttlmAmt")),
        "payeeReceiveAmount": _amount_to_native(tx.get("InstdAmt")),
        "payeeFspFee": _amount_to_native(dig(tx, "ChrgsInf.Amt")),
        "payeeFspCommission": _amount_to_native(dig(tx, "ChrgsInf.Cmssn")),
        "expiration": dig(body, "GrpHdr.PmtInstrXpryDtTm"),
        "ilpPacket": dig(tx, "VrfctnOfTerms.IlpV4PrepPacket"),
        "condition": dig(tx, "VrfctnOfTerms.Sh256Sgntr"),
    })


# ---------------------------------------------------------------------------
# transfers
# ---------------------------------------------------------------------------


# FSPIOP transfer state <-> ISO 20022 ExternalPaymentTransactionStatus1Code
TRANSFER_STATES: Dict[str, str] = {
    "RECEIVED": "RCVD",
    "RESERVED": "ACSP",
    "COMMITTED": "ACSC",
    "ABORTED": "RJCT",
}
_TRANSFER_STATES_REVERSED = {v: k for k, v in TRANSFER_STATES.items()}


def transfers_post_to_iso(body: Dict[str, Any], ctx: MessageContext) -> Dict[str, Any]:
    return _prune({
        "GrpHdr": _group_header(body, ctx, NbOfTxs="1", SttlmInf={"SttlmMtd": "CLRG"}),
        "CdtTrfTxInf": {
            "PmtId": {"TxId": body.get("transferId")},
            "IntrBkSttlmAmt": _amount_to_iso(body.get("amount")),
            "DbtrAgt": _agent(body.get("payerFsp")),
            "CdtrAgt": _agent(body.get("payeeFsp")),
            "VrfctnOfTerms": {
                "IlpV4PrepPacket": body.get("ilpPacket"),
                "Sh256Sgntr": body.get("condition"),
            },
            "ExpryDtTm": body.get("expiration"),
        },
    })


def transfers_post_to_native(body: Dict[str, Any], ctx: MessageContext) -> Dict[str, Any]:
    tx = body.get("CdtTrfTxInf") or {}
    return _prune({
        "transferId": dig(tx, "PmtId.TxId"),
        "payeeFsp": _agent_id(tx.get("CdtrAgt")),
        "payerFsp": _agent_id(tx.get("DbtrAgt")),
        "amount": _amount_to_native(tx.get("IntrBkSttlmAmt")),
        "ilpPacket": dig(tx, "VrfctnOfTerms.IlpV4PrepPacket"),
        "condition": dig(tx, "VrfctnOfTerms.Sh256Sgntr"),
        "expiration": tx.get("ExpryDtTm"),
    })


def transfers_status_to_iso(body: Dict[str, Any], ctx: MessageContext) -> Dict[str, Any]:
    state = body.get("transferState")
    return _prune({
        "GrpHdr": _group_header(body, ctx),
        "TxInfAndSts": {
            "ExctnConf": body.get("fulfilment"),
            "PrcgDt": {"DtTm": body.get("completedTimestamp")},
            "TxSts": TRANSFER_STATES.get(state, state) if state else None,
        },
    })


def transfers_status_to_native(body: Dict[str, Any], ctx: MessageContext) -> Dict[str, Any]:
    info = body.get("TxInfAndSts") or {}
    status = info.get("TxSts")
    return _prune({
        "fulfilment": info.get("ExctnConf"),
        "completedTimestamp": dig(info, "PrcgDt.DtTm"),
        "transferState": _TRANSFER_STATES_REVERSED.get(status, status) if status else None,
    })


# ---------------------------------------------------------------------------
# errors (quotes, transfers)
# ---------------------------------------------------------------------------


def status_error_to_iso(body: Dict[str, Any], ctx: MessageContext) -> Dict[str, Any]:
    return _prune({
        "GrpHdr": _group_header(body, ctx),
        "TxInfAndSts": {
            "TxSts": "RJCT",
            "StsRsnInf": {"Rsn": {"Prtry": dig(body, "errorInformation.errorCode")}},
        },
    })


def status_error_to_native(body: Dict[str, Any], ctx: MessageContext) -> Dict[str, Any]:
    return _prune(_error_native(dig(body, "TxInfAndSts.StsRsnInf.Rsn.Prtry")))


# ---------------------------------------------------------------------------
# Table
# ---------------------------------------------------------------------------


_PARTY_LOSSLESS = (
    "party.partyIdInfo.partyIdType",
    "party.partyIdInfo.partyIdentifier",
    "party.partyIdInfo.partySubIdOrType",
    "party.partyIdInfo.fspId",
    "party.name",
)

_ERROR_LOSSLESS = ("errorInformation.errorCode",)

_TRANSFER_STATUS_LOSSLESS = ("fulfilment", "completedTimestamp", "transferState")


_ASSIGNMENT_ROOTS = ("Assgnmt", "Rpt")
_TRANSFER_ROOTS = ("GrpHdr", "CdtTrfTxInf")
_STATUS_ROOTS = ("GrpHdr", "TxInfAndSts")

_ROOTS = {
    "acmt.024": _ASSIGNMENT_ROOTS,
    "pacs.081": _TRANSFER_ROOTS,
    "pacs.082": _TRANSFER_ROOTS,
    "pacs.008": _TRANSFER_ROOTS,
    "pacs.002": _STATUS_ROOTS,
}


def _mapping(resource_type: str, variant: str, message: str,
             to_alternate: Converter, to_native: Converter,
             lossless: Tuple[str, ...]) -> DialectMapping:
    return DialectMapping(resource_type, variant, message, to_alternate, to_native, lossless,
                          roots=_ROOTS[message])


MAPPINGS: Dict[Tuple[str, str], DialectMapping] = {
    (m.resource_type, m.variant): m
    for m in (
        _mapping("parties", "put", "acmt.024", parties_put_to_iso, parties_put_to_native,
                 _PARTY_LOSSLESS),
        _mapping("parties", "put_error", "acmt.024", parties_error_to_iso, parties_error_to_native,
                 _ERROR_LOSSLESS),
        _mapping("quotes", "post", "pacs.081", quotes_post_to_iso, quotes_post_to_native, (
            "quoteId", "transactionId", "transactionRequestId",
            "payee.partyIdInfo.partyIdType", "payee.partyIdInfo.partyIdentifier",
            "payee.partyIdInfo.fspId",
            "payer.partyIdInfo.partyIdType", "payer.partyIdInfo.partyIdentifier",
            "payer.partyIdInfo.fspId",
            "amountType", "amount.currency", "amount.amount",
            "transactionType.scenario", "note", "expiration",
        )),
        _mapping("quotes", "put", "pacs.082", quotes_put_to_iso, quotes_put_to_native, (
            "transferAmount.currency", "transferAmount.amount",
            "payeeReceiveAmount.currency", "payeeReceiveAmount.amount",
            "payeeFspFee.currency", "payeeFspFee.amount",
            "payeeFspCommission.currency", "payeeFspCommission.amount",
            "expiration", "ilpPacket", "condition",
        )),
        _mapping("quotes", "put_error", "pacs.002", status_error_to_iso, status_error_to_native,
                 _ERROR_LOSSLESS),
        _mapping("transfers", "post", "pacs.008", transfers_post_to_iso, transfers_post_to_native, (
            "transferId", "payeeFsp", "payerFsp", "amount.currency", "amount.amount",
            "ilpPacket", "condition", "expiration",
        )),
        _mapping("transfers", "put", "pacs.002", transfers_status_to_iso, transfers_status_to_native,
                 _TRANSFER_STATUS_LOSSLESS),
        _mapping("transfers", "patch", "pacs.002", transfers_status_to_iso, transfers_status_to_native,
                 _TRANSFER_STATUS_LOSSLESS),
        _mapping("transfers", "put_error", "pacs.002", status_error_to_iso, status_error_to_native,
                 _ERROR_LOSSLESS),
    )
}


def get_mapping(resource_type: str, variant: str) -> Optional[DialectMapping]:
    return MAPPINGS.get((resource_type, variant))


def has_mapping(resource_type: str) -> bool:
    return any(rt == resource_type for rt, _ in MAPPINGS)
