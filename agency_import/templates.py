"""
Example workbooks operators download and fill in.

Header names are the ones the import flows recognise first; sample rows
show the expected date and amount formats.
"""

from io import BytesIO
from typing import List, Dict

import pandas as pd


XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

_CUSTOMER_SAMPLES = [
    {'Müşteri Adı': 'Ahmet Yılmaz', 'TC Kimlik No': '12345678901', 'Vergi No': '',
     'Telefon': '05321234567', 'Email': 'ahmet@example.com'},
    {'Müşteri Adı': 'Mehmet Kaya', 'TC Kimlik No': '98765432109', 'Vergi No': '',
     'Telefon': '05339876543', 'Email': 'mehmet@example.com'},
]

_POLICY_SAMPLES = [
    {'Sigorta Şirketi': 'Anadolu Sigorta', 'Poliçe No': 'POL123456', 'Poliçe Tipi': 'kasko',
     'Sigortalı Adı': 'Ahmet Yılmaz', 'Plaka': '34ABC123', 'Marka Model': 'Renault Clio',
     'Riziko Adresi 1': '', 'Riziko Adresi 2': '',
     'Başlangıç Tarihi': '01.01.2024', 'Bitiş Tarihi': '01.01.2025', 'Prim Tutarı': '5000'},
    {'Sigorta Şirketi': 'Türkiye Sigorta', 'Poliçe No': 'POL789012', 'Poliçe Tipi': 'konut',
     'Sigortalı Adı': 'Mehmet Kaya', 'Plaka': '', 'Marka Model': '',
     'Riziko Adresi 1': 'Atatürk Cad. No:5', 'Riziko Adresi 2': 'Kadıköy / İstanbul',
     'Başlangıç Tarihi': '15.02.2024', 'Bitiş Tarihi': '15.02.2025', 'Prim Tutarı': '1.250,50'},
]

CLAIM_TEMPLATE = [
    {'Dosya No': 'HS-2024-001', 'Poliçe No': 'POL123456', 'Plaka': '34ABC123',
     'Sigorta Şirketi': 'Anadolu Sigorta', 'Poliçe Türü': 'Kasko', 'Hasar Tarihi': '15.01.2024',
     'Ödeme Tutarı': 5000, 'Hasar Nedeni': 'Çarpma hasarı'},
    {'Dosya No': 'HS-2024-002', 'Poliçe No': 'POL789012', 'Plaka': '34XYZ789',
     'Sigorta Şirketi': 'Quick Sigorta', 'Poliçe Türü': 'Trafik', 'Hasar Tarihi': '20.01.2024',
     'Ödeme Tutarı': 3500, 'Hasar Nedeni': 'Park halinde çarpma'},
    {'Dosya No': 'HS-2024-003', 'Poliçe No': 'POL345678', 'Plaka': '',
     'Sigorta Şirketi': 'Allianz', 'Poliçe Türü': 'İşyeri', 'Hasar Tarihi': '25.01.2024',
     'Ödeme Tutarı': 0, 'Hasar Nedeni': 'Yangın'},
]

POLICY_COMPANY_TEMPLATE = [
    {'Poliçe No': 'POL123456', 'Sigorta Şirketi': 'Anadolu Sigorta'},
    {'Poliçe No': 'POL789012', 'Sigorta Şirketi': 'Allianz'},
]

TEMPLATE_KINDS = ('policies', 'policies-single-client', 'claims', 'policy-companies')


def template_rows(kind: str) -> List[Dict]:
    """Sample rows for a template kind."""
    if kind == 'policies':
        return [{**customer, **policy} for customer, policy in zip(_CUSTOMER_SAMPLES, _POLICY_SAMPLES)]
    if kind == 'policies-single-client':
        return [dict(policy) for policy in _POLICY_SAMPLES]
    if kind == 'claims':
        return [dict(row) for row in CLAIM_TEMPLATE]
    if kind == 'policy-companies':
        return [dict(row) for row in POLICY_COMPANY_TEMPLATE]
    raise ValueError(f"Unknown template: {kind}. Available: {', '.join(TEMPLATE_KINDS)}")


def template_filename(kind: str) -> str:
    return {
        'policies': 'police_sablonu.xlsx',
        'policies-single-client': 'police_sablonu_tek_musteri.xlsx',
        'claims': 'hasar_sablonu.xlsx',
        'policy-companies': 'police_sirket_guncelleme_sablonu.xlsx',
    }[kind]


def build_template(kind: str) -> bytes:
    """Render a template workbook as .xlsx bytes."""
    df = pd.DataFrame(template_rows(kind))
    sheet = 'Hasarlar' if kind == 'claims' else 'Poliçeler'

    output = BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=sheet, index=False)
    return output.getvalue()
