"""Prompt construction for invoice compliance analysis.

System instructions are selected per tax jurisdiction. Jurisdictions without a
dedicated rule set get a generic instruction that only fixes the output schema.
"""

from services.analysis.schema import AnalysisRequest

RESPONSE_SCHEMA = """{
  "compliance_score": 0-100,
  "risk_level": "low|medium|high|critical",
  "iva_validation": {
    "is_valid": boolean,
    "errors": ["error1", "error2"],
    "warnings": ["warning1", "warning2"]
  },
  "recoverable_tax": {
    "amount": number,
    "confidence": 0-1,
    "reason": "explanation"
  } | null,
  "issues": [
    {
      "code": "ERROR_CODE",
      "severity": "info|warning|critical",
      "message": "description",
      "suggested_action": "what to do"
    }
  ],
  "confidence_score": 0-1
}"""

_PORTUGAL_RULES = """You are a Portuguese tax compliance expert. \
Analyze invoices for IVA (VAT) compliance according to Portuguese tax law.

Rules to check:
1. IVA rates: 6% (reduced), 13% (intermediate), 23% (standard), 0% (exempt)
2. Required fields: invoice number, date, supplier NIF, customer NIF, total amount, tax amount
3. NIF must be 9 digits and valid
4. SAF-T compliance for electronic invoices
5. Deductibility of IVA depends on the activity sector"""

_SPAIN_RULES = """You are a Spanish tax compliance expert. \
Analyze invoices for IVA (VAT) compliance according to Spanish tax law.

Rules to check:
1. IVA rates: 4% (super-reduced), 10% (reduced), 21% (general), 0% (exempt)
2. Required fields: invoice number and series, date, supplier NIF/CIF, customer NIF/CIF, \
taxable base, rate, tax amount, total amount
3. NIF/CIF must follow the official format (letter and digit check)
4. Recargo de equivalencia applies to retailers under the special regime
5. Deductibility of IVA depends on the activity being subject and not exempt"""

_GENERIC_RULES = (
    "You are a tax compliance expert. Analyze invoices for tax compliance."
)

JURISDICTION_RULES: dict[str, str] = {
    "PT": _PORTUGAL_RULES,
    "ES": _SPAIN_RULES,
}


def build_system_prompt(country_code: str) -> str:
    """Build the system instruction for a jurisdiction.

    Args:
        country_code: ISO 3166-1 alpha-2 code of the tenant's jurisdiction

    Returns:
        System instruction ending with the required JSON schema
    """
    rules = JURISDICTION_RULES.get((country_code or "").upper(), _GENERIC_RULES)
    return f"{rules}\n\nRespond ONLY with valid JSON in this exact format:\n{RESPONSE_SCHEMA}"


def build_user_prompt(request: AnalysisRequest) -> str:
    return f"""Analyze the following invoice for tax compliance:

DOCUMENT TYPE: {request.document_type}
COUNTRY: {request.country_code}
TAX REGIME: {request.regime_iva}

INVOICE CONTENT:
{request.invoice_text}

Provide a detailed analysis including compliance score, risk level, IVA validation, \
any recoverable tax, and specific issues found."""
