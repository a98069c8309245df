"""
Deterministic fallback record generation.

When no live source yields data, a plausible record is synthesized from
the CRC32 of the access key. The same key always produces the same record,
so repeated queries (and any cache in front of the engine) stay stable.

Design Decisions:
- Fixed catalogs, indexed by hash arithmetic; no randomness anywhere
- Line item totals are split evenly with the rounding remainder on the
  last item, so they always sum exactly to the invoice total
- Records are flagged is_synthetic; callers must never mistake them for
  data from the tax authority
"""

import logging
from decimal import ROUND_HALF_UP, Decimal

from romaneio.domain.access_key import AccessKeyFields
from romaneio.domain.hashing import derived_issue_date, key_hash
from romaneio.domain.models import CENTS, CanonicalRecord, LineItem, RecordStatus

logger = logging.getLogger(__name__)

FALLBACK_SOURCE = "fallback"

# Total = (h % TOTAL_SPREAD + TOTAL_FLOOR) / 100, i.e. 10.00 to 1000.00
TOTAL_FLOOR = 1000
TOTAL_SPREAD = 99001

ISSUER_CATALOG = [
    "Comercial ABC Ltda.",
    "Distribuidora XYZ S.A.",
    "Atacado Central Ltda.",
    "Varejo Express S.A.",
    "Logística Rápida Ltda.",
    "Importadora Global S.A.",
    "Comércio Nacional Ltda.",
    "Atacadão Regional S.A.",
    "Distribuidor Premium Ltda.",
    "Varejista Express S.A.",
]

RECIPIENT_CATALOG = ISSUER_CATALOG + [
    "Supermercado Moderno Ltda.",
    "Loja de Departamentos S.A.",
    "Farmácia Popular Ltda.",
    "Posto de Combustível S.A.",
    "Restaurante Familiar Ltda.",
    "Padaria Artesanal S.A.",
    "Mercado Municipal Ltda.",
    "Loja de Eletrônicos S.A.",
    "Casa de Carnes Ltda.",
    "Distribuidora de Bebidas S.A.",
]

# (name, category)
PRODUCT_CATALOG = [
    ("Notebook Dell Inspiron 15", "Eletrônicos"),
    ("Mouse Wireless Logitech", "Periféricos"),
    ("Teclado Mecânico RGB", "Periféricos"),
    ('Monitor LG 24" Full HD', "Eletrônicos"),
    ("Webcam HD 1080p", "Periféricos"),
    ("Headset Gamer com Microfone", "Áudio"),
    ("Impressora Multifuncional HP", "Impressão"),
    ("Scanner de Documentos", "Escritório"),
    ("Cabo HDMI 2.0 2m", "Conexão"),
    ("Adaptador USB-C para HDMI", "Conexão"),
    ("Pendrive 32GB USB 3.0", "Armazenamento"),
    ("HD Externo 1TB USB 3.0", "Armazenamento"),
    ("SSD 256GB SATA III", "Armazenamento"),
    ("Memória RAM 8GB DDR4", "Hardware"),
    ("Processador Intel i5 10ª Geração", "Hardware"),
    ("Placa de Vídeo GTX 1650", "Hardware"),
    ("Fonte 500W 80 Plus Bronze", "Hardware"),
    ("Gabinete ATX com Filtros", "Hardware"),
    ("Cooler para Processador", "Hardware"),
    ("Placa Mãe B460M", "Hardware"),
]


class DeterministicFallbackGenerator:
    """
    Synthesizes a reproducible record from an access key.

    Example:
        generator = DeterministicFallbackGenerator()
        record = generator.generate(parse_access_key(key))
        assert record == generator.generate(parse_access_key(key))
    """

    def generate(
        self,
        fields: AccessKeyFields,
        note: str = "Synthesized from the access key; no source returned data",
    ) -> CanonicalRecord:
        """
        Build the synthetic record for a key. Never fails.

        Args:
            fields: Parsed access key
            note: Resolution note to attach

        Returns:
            CanonicalRecord with is_synthetic=True
        """
        h = key_hash(fields.raw)
        total = self.total_value(h)

        record = CanonicalRecord(
            access_key=fields.raw,
            issuer_name=ISSUER_CATALOG[h % len(ISSUER_CATALOG)],
            issuer_tax_id=fields.issuer_tax_id,
            recipient_name=RECIPIENT_CATALOG[h % len(RECIPIENT_CATALOG)],
            total_value=total,
            status=RecordStatus.AUTHORIZED,
            issue_date=derived_issue_date(fields),
            document_number=fields.number,
            series=fields.series,
            line_items=tuple(self.line_items(h, total)),
            source_label=FALLBACK_SOURCE,
            resolution_note=note,
            is_synthetic=True,
        )

        logger.debug(f"Synthesized record for {fields.raw}: total {total}")
        return record

    def total_value(self, h: int) -> Decimal:
        return (Decimal((h % TOTAL_SPREAD) + TOTAL_FLOOR) / 100).quantize(CENTS)

    def line_items(self, h: int, total: Decimal) -> list[LineItem]:
        """
        Pick 1-3 catalog products and split the total among them.

        Every item shares the same hash-derived quantity; unit values are
        rounded half-up, so quantity * unit_value may differ from the item
        total by a cent.
        """
        count = (h % 3) + 1
        quantity = Decimal((h % 5) + 1)
        share = (total / count).quantize(CENTS, rounding=ROUND_HALF_UP)

        items: list[LineItem] = []
        remaining = total
        for i in range(count):
            name, category = PRODUCT_CATALOG[(h + i) % len(PRODUCT_CATALOG)]
            item_total = remaining if i == count - 1 else share
            remaining -= item_total

            items.append(LineItem(
                name=name,
                category=category,
                quantity=quantity,
                unit_value=(item_total / quantity).quantize(CENTS, rounding=ROUND_HALF_UP),
                total_value=item_total,
                code=f"PROD{(h % 9999) + i:04d}",
            ))

        return items
