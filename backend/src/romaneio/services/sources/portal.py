"""
Public consultation portal adapter.

The portal is an ASP.NET WebForms page: the first GET hands out the hidden
state fields, the POST carries them back together with the key. The
answer is rendered HTML, read by the HTML scrape extractor.
"""

import html
import logging
from typing import Any

import lxml.html

from romaneio.domain.access_key import AccessKeyFields
from romaneio.domain.models import FailureReason, PartialRecord
from romaneio.services.extraction.html_extractor import HtmlScrapeExtractor

from .base import SourceAdapter, SourceError

logger = logging.getLogger(__name__)

PORTAL_URL = "https://www.nfe.fazenda.gov.br/portal/consultaResumo.aspx"
PORTAL_ORIGIN = "https://www.nfe.fazenda.gov.br"

KEY_FIELD = "ctl00$ContentPlaceHolder1$txtChaveAcesso"
SUBMIT_FIELD = "ctl00$ContentPlaceHolder1$btnConsultar"

HIDDEN_FIELDS = ["__VIEWSTATE", "__VIEWSTATEGENERATOR", "__EVENTVALIDATION"]


def extract_hidden_fields(page: str) -> dict[str, str]:
    """Collect the ASP.NET hidden state fields present on a page."""
    if not page.strip():
        return {}

    tree = lxml.html.fromstring(page)
    fields: dict[str, str] = {}
    for name in HIDDEN_FIELDS:
        values = tree.xpath("//input[@name=$name]/@value", name=name)
        if values:
            fields[name] = str(values[0])
    return fields


class HtmlScrapedPortalAdapter(SourceAdapter):
    """Posts the key to the consultation form and scrapes the answer."""

    name = "portal"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.extractor = HtmlScrapeExtractor()

    def default_headers(self) -> dict[str, str]:
        return {
            **super().default_headers(),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Cache-Control": "no-cache",
        }

    def fetch(self, fields: AccessKeyFields) -> PartialRecord | None:
        form_page = self.get(PORTAL_URL)
        hidden = extract_hidden_fields(form_page.text)
        if "__VIEWSTATE" not in hidden:
            raise SourceError(FailureReason.UNPARSEABLE, "Consultation form has no __VIEWSTATE")

        form = {
            "__VIEWSTATE": hidden["__VIEWSTATE"],
            "__VIEWSTATEGENERATOR": hidden.get("__VIEWSTATEGENERATOR", ""),
            "__EVENTVALIDATION": hidden.get("__EVENTVALIDATION", ""),
            KEY_FIELD: fields.raw,
            SUBMIT_FIELD: "Consultar",
        }
        response = self.post(
            PORTAL_URL,
            data=form,
            headers={"Referer": PORTAL_URL, "Origin": PORTAL_ORIGIN},
        )

        failure = self.extractor.detect_failure(html.unescape(response.text))
        if failure:
            raise SourceError(FailureReason.NO_FIELDS, f"Portal page reports '{failure}'")

        record = self.extractor.extract(response.text)
        if record is None:
            logger.debug(f"Portal answered {len(response.text)} chars without fields for {fields.raw}")
        return record
