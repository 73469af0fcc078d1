"""Dealership onboarding: validation and delivery to the onboarding webhook and SEOWerks."""

from __future__ import annotations

import logging
import uuid
from typing import Any
from typing import Dict
from typing import List

import httpx

from seohub.config import get_settings

logger = logging.getLogger(__name__)

USER_AGENT = "Rylie-SEO-Hub/1.0"
MIN_TARGET_ENTRIES = 3

_REQUIRED_FIELDS = [
    "dealerName",
    "package",
    "mainBrand",
    "address",
    "city",
    "state",
    "zipCode",
    "dealerContactName",
    "dealerContactTitle",
    "dealerContactEmail",
    "dealerContactPhone",
    "dealerWebsiteUrl",
    "billingContactEmail",
]

_TARGET_FIELDS = ["targetVehicleModels", "targetCities", "targetDealers"]


def transform_to_seowerks(form: Dict[str, Any]) -> Dict[str, Any]:
    """Map onboarding form fields (snake_case) onto SEOWerks' dealer vocabulary."""

    package = form.get("package")
    return {
        "dealerName": form.get("business_name") or "",
        "package": getattr(package, "value", package) or "",
        "mainBrand": form.get("main_brand") or "",
        "otherBrand": form.get("other_brand"),
        "address": form.get("address") or "",
        "city": form.get("city") or "",
        "state": form.get("state") or "",
        "zipCode": form.get("zip_code") or "",
        "dealerContactName": form.get("contact_name") or "",
        "dealerContactTitle": form.get("contact_title") or "",
        "dealerContactEmail": form.get("email") or "",
        "dealerContactPhone": form.get("phone") or "",
        "dealerWebsiteUrl": form.get("website_url") or "",
        "billingContactEmail": form.get("billing_email") or "",
        "siteAccessNotes": form.get("site_access_notes") or "",
        "targetVehicleModels": [v for v in form.get("target_vehicle_models") or [] if v and v.strip()],
        "targetCities": [v for v in form.get("target_cities") or [] if v and v.strip()],
        "targetDealers": [v for v in form.get("target_dealers") or [] if v and v.strip()],
    }


def validate_seowerks_data(data: Dict[str, Any]) -> List[str]:
    """Return the missing field names; empty when *data* is complete."""

    missing = [f for f in _REQUIRED_FIELDS if not str(data.get(f) or "").strip()]
    for field in _TARGET_FIELDS:
        if len(data.get(field) or []) < MIN_TARGET_ENTRIES:
            missing.append(f"{field} (minimum {MIN_TARGET_ENTRIES})")
    return missing


def build_seowerks_form(data: Dict[str, Any]) -> Dict[str, str]:
    """Form-encoded fields in the order SEOWerks' intake form expects."""

    fields = [
        ("dealer_name", data["dealerName"]),
        ("package", data["package"]),
        ("main_brand", data["mainBrand"]),
    ]
    if data.get("otherBrand"):
        fields.append(("other_brand", data["otherBrand"]))
    fields += [
        ("address", data["address"]),
        ("city", data["city"]),
        ("state", data["state"]),
        ("zip_code", data["zipCode"]),
        ("dealer_contact_name", data["dealerContactName"]),
        ("dealer_contact_title", data["dealerContactTitle"]),
        ("dealer_contact_email", data["dealerContactEmail"]),
        ("dealer_contact_phone", data["dealerContactPhone"]),
        ("dealer_website_url", data["dealerWebsiteUrl"]),
        ("billing_contact_email", data["billingContactEmail"]),
        ("site_access_notes", data["siteAccessNotes"]),
    ]
    for key, form_key in (
        ("targetVehicleModels", "target_vehicle_models"),
        ("targetCities", "target_cities"),
        ("targetDealers", "target_dealers"),
    ):
        fields += [(f"{form_key}[{i}]", value) for i, value in enumerate(data[key])]
    return dict(fields)


def submit_to_webhook(form: Dict[str, Any]) -> Dict[str, Any]:
    """POST the raw form to ``ONBOARDING_WEBHOOK_URL``.

    Without a configured URL the submission is simulated and a local
    reference id is returned.
    """

    url = get_settings().onboarding_webhook_url
    if not url:
        reference = f"local-{uuid.uuid4().hex[:12]}"
        logger.info("ONBOARDING_WEBHOOK_URL not set, simulating submission %s", reference)
        return {"success": True, "referenceId": reference, "simulated": True}

    try:
        response = httpx.post(url, json=form, headers={"User-Agent": USER_AGENT}, timeout=30.0)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.error("Onboarding webhook failed: %s", exc)
        return {"success": False, "error": str(exc)}

    try:
        body = response.json()
    except ValueError:
        body = {}
    return {"success": True, "referenceId": body.get("referenceId") or body.get("id")}


def submit_to_seowerks(data: Dict[str, Any]) -> Dict[str, Any]:
    try:
        response = httpx.post(
            get_settings().seowerks_onboarding_url,
            data=build_seowerks_form(data),
            headers={"Accept": "application/json, text/plain, */*", "User-Agent": USER_AGENT},
            timeout=30.0,
        )
        response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.error("SEOWerks submission for %s failed: %s", data["dealerName"], exc)
        return {"success": False, "message": "Failed to submit to SEOWerks platform", "error": str(exc)}

    return {"success": True, "message": "Successfully submitted to SEOWerks platform"}
