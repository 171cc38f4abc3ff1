"""
Bill parser - payable bills from WhatsApp messages (single message or bulleted list)
"""

import re
from typing import List, Optional, Tuple

from src.core.amount_parser import AmountMatch, extract_amount
from src.core.extraction import ParseContext, ParserStrategy
from src.core.models import ActionKind, BillDraft
from src.core.time_parser import find_date


UNKNOWN_VENDOR = "Unknown vendor"

LIST_ITEM = re.compile(r'^\s*(?:[-*•·]|\d{1,2}[.)])\s+(?P<body>\S.*)$')

_WORD = r"[A-Za-zÁÉÍÓÚÜÑáéíóúüñ][\wÁÉÍÓÚÜÑáéíóúüñ&'.-]*"
# up to four words; trailing prepositions and dates are cut by _clean_name
_NAME = rf"(?P<name>{_WORD}(?:\s+{_WORD}){{0,3}})"
_AMOUNT_TOKEN = r"(?:US\$|MX\$|\$)?\s*\d[\d.,]*\s*(?:pesos?|mxn|usd|d[oó]lares?|dollars?|eur|euros?)?"

PAYMENT_WORDS = re.compile(
    r'\b(?:pago|pagu[eé]|pagar|pagamos|gasto|gast[eé]|total|monto|payment|paid|pay|spent)\b',
    re.IGNORECASE
)

NAME_STOPWORDS = {
    'a', 'al', 'de', 'del', 'el', 'la', 'los', 'las', 'en', 'por', 'para', 'con', 'y', 'que',
    'hoy', 'mañana', 'the', 'to', 'for', 'on', 'at', 'of', 'and', 'today', 'tomorrow',
}


class BillParser(ParserStrategy):
    """Extract BillDrafts; one per list item when the message is a list of amounts"""

    action_kind = ActionKind.CREATE_BILL_PAYABLE

    def __init__(self):
        super().__init__()

        # Vendor patterns, most specific first
        self.vendor_patterns = [
            re.compile(rf"\ba\s+favor\s+de\s+{_NAME}", re.IGNORECASE),
            re.compile(
                rf"\b(?:pago|pagu[eé]|pagamos|payment|paid|transferencia|transfer[ií]?)\b(?:\s+de)?\s+{_AMOUNT_TOKEN}\s+(?:a|para|to)\s+(?!favor\s+de\b){_NAME}",
                re.IGNORECASE
            ),
            re.compile(rf"\b(?:pagar(?:le)?|pay)\s+(?:a|to)\s+{_NAME}", re.IGNORECASE),
            re.compile(
                rf"\b(?:factura|recibo|cuenta|bill|invoice)\s+(?:de(?:l)?|from|of)\s+(?:la\s+|el\s+|the\s+)?{_NAME}",
                re.IGNORECASE
            ),
        ]

        self.category_keywords = {
            'comida': ['comida', 'restaurante', 'food', 'restaurant', 'café', 'coffee', 'despensa'],
            'transporte': ['uber', 'taxi', 'gasolina', 'transport', 'didi', 'estacionamiento'],
            'servicios': ['luz', 'agua', 'gas', 'internet', 'telefono', 'teléfono', 'electricity', 'water', 'cfe'],
            'compras': ['walmart', 'costco', 'supermarket', 'supermercado', 'tienda', 'store', 'shopping'],
            'salud': ['doctor', 'medicina', 'farmacia', 'hospital', 'health', 'dentista'],
            'entretenimiento': ['cine', 'movie', 'netflix', 'spotify', 'entertainment'],
            'vivienda': ['renta', 'rent', 'mantenimiento', 'hipoteca'],
            'educacion': ['colegiatura', 'escuela', 'school', 'universidad'],
        }

    def parse(self, content: str, context: ParseContext) -> List[BillDraft]:
        content = (content or "").strip()
        if not content:
            return []

        header, items = self._split_candidates(content, context)
        if items:
            drafts = [self._parse_candidate(item, context, fallback_text=header) for item in items]
        else:
            drafts = [self._parse_candidate(content, context)]

        drafts = [draft for draft in drafts if draft is not None]
        self.logger.debug(f"Bill parser produced {len(drafts)} drafts ({'list' if items else 'single'})")
        return drafts

    def _split_candidates(self, content: str, context: ParseContext) -> Tuple[str, List[str]]:
        """(non-list text, list items) when at least two list items carry an amount"""
        header_lines, items = [], []
        for line in content.splitlines():
            match = LIST_ITEM.match(line)
            if match and self._find_amount(match.group('body'), context):
                items.append(match.group('body').strip())
            elif line.strip():
                header_lines.append(line.strip())

        if len(items) < 2:
            return content, []
        return "\n".join(header_lines), items

    def _find_amount(self, text: str, context: ParseContext) -> Optional[AmountMatch]:
        locale = context.locale
        return extract_amount(text, locale.thousands_separator, locale.decimal_separator, locale.default_currency)

    def _parse_candidate(self, text: str, context: ParseContext, fallback_text: str = "") -> Optional[BillDraft]:
        amount = self._find_amount(text, context)
        vendor = self._extract_vendor(text, amount)

        if amount is None and vendor is None:
            return None

        category = self._detect_category(text) or (self._detect_category(fallback_text) if fallback_text else None)
        due = find_date(text, context.sent_at.date(), context.locale.day_first)
        if due is None and fallback_text:
            due = find_date(fallback_text, context.sent_at.date(), context.locale.day_first)

        confidence = 0.3
        if amount is not None:
            confidence += 0.3
            if amount.currency_explicit:
                confidence += 0.05
            if amount.ambiguous:
                confidence -= 0.2
        if vendor:
            confidence += 0.3
        if category:
            confidence += 0.05
        if vendor is None:
            # a bill without a recognizable payee always needs review
            confidence = min(confidence, 0.4)

        metadata = {}
        if amount is not None and amount.ambiguous:
            metadata['amount_ambiguous'] = True
            metadata['amount_raw'] = amount.raw

        return BillDraft(
            vendor=vendor or UNKNOWN_VENDOR,
            amount=amount.amount if amount else None,
            currency=amount.currency if amount else context.locale.default_currency,
            category=category,
            description=text[:500],
            due_date=due.value if due else None,
            confidence=confidence,
            source_span=text,
            metadata=metadata,
        )

    def _extract_vendor(self, text: str, amount: Optional[AmountMatch]) -> Optional[str]:
        for pattern in self.vendor_patterns:
            match = pattern.search(text)
            if match:
                name = self._clean_name(match.group('name'))
                if name:
                    return name

        if amount is None:
            return None

        # "Luz: $1,200" / "Renta - 8,000"
        before = PAYMENT_WORDS.sub('', text[:amount.start]).strip(" \t:-–=")
        if before:
            if re.search(r'[A-Za-zÁÉÍÓÚÑáéíóúñ]', before) and len(before.split()) <= 4:
                return self._clean_name(before)
            return None

        # "$1,200 luz" / "500 de gasolina"
        after = text[amount.end:].strip(" \t:-–=")
        match = re.match(rf"(?:de\s+|en\s+|para\s+)?{_NAME}", after, re.IGNORECASE)
        if match:
            return self._clean_name(match.group('name'))
        return None

    def _clean_name(self, name: str) -> Optional[str]:
        words = []
        for word in name.split():
            if words and word.lower() in NAME_STOPWORDS:
                break
            words.append(word)
        while words and words[-1].lower() in NAME_STOPWORDS:
            words.pop()
        cleaned = " ".join(words).strip(" .,;:")
        if not cleaned or cleaned.lower() in NAME_STOPWORDS:
            return None
        return cleaned[0].upper() + cleaned[1:]

    def _detect_category(self, text: str) -> Optional[str]:
        lowered = text.lower()
        for category, keywords in self.category_keywords.items():
            if any(re.search(rf'\b{re.escape(keyword)}\b', lowered) for keyword in keywords):
                return category
        return None
