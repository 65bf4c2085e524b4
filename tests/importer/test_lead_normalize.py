from leadbook.importer.contracts import (
    get_lead_alias_map,
    get_lead_required_fields,
    normalize_header,
    resolve_fields,
)
from leadbook.importer.contracts.lead import coerce_text
from leadbook.importer.pipeline.normalize import (
    EMPTY_ROW,
    CanonicalRow,
    company_key,
    normalize_row,
    normalize_website,
    parse_additional_contacts,
    split_emails,
    split_phones,
)


def test_required_fields_are_company_and_country():
    assert get_lead_required_fields() == ("company_name", "country")


def test_normalize_header_ignores_case_spacing_and_bom():
    assert normalize_header("\ufeffCompany Name") == "companyname"
    assert normalize_header("contact_email") == normalize_header("contactEmail")
    assert get_lead_alias_map()["agencyname"] == "company_name"


def test_resolve_fields_first_non_blank_alias_wins():
    fields = resolve_fields({"company": "  ", "Company Name": "Acme Ltd", "Agency Name": "Ignored"})

    assert fields["company_name"] == "Acme Ltd"
    assert fields["country"] is None
    assert set(fields) >= {"company_name", "country", "contact_email", "additional_contacts"}


def test_coerce_text_renders_integral_floats_without_fraction():
    assert coerce_text(5551234567.0) == "5551234567"
    assert coerce_text("  ") is None
    assert coerce_text(None) is None


def test_normalize_website_strips_protocol_www_and_trailing_slash():
    assert normalize_website("HTTPS://www.Acme.com/") == "acme.com"
    assert normalize_website("acme.com/contact") == "acme.com/contact"
    assert normalize_website(None) == ""


def test_company_key_casefolds_name_and_keeps_website():
    assert company_key("  ACME ", "acme.com") == "acme|acme.com"
    assert company_key("Acme", "") == "acme|"


def test_split_emails_lowercases_filters_and_dedupes():
    assert split_emails("A@X.com; not-an-email, b@x.com,a@x.com") == ("a@x.com", "b@x.com")
    assert split_emails(None) == ()


def test_split_phones_drops_short_tokens_and_whitespace():
    assert split_phones("555 1234, 123; +1 (555) 000-1111") == ("5551234", "+1(555)000-1111")


def test_parse_additional_contacts_requires_three_parts_and_a_channel():
    contacts = parse_additional_contacts("Bob, bob@x.com, 5551234567; Eve, nope; Zed, bad, 12")

    assert len(contacts) == 1
    assert contacts[0].first_name == "Bob"
    assert contacts[0].emails == ("bob@x.com",)
    assert contacts[0].phones == ("5551234567",)


def test_normalize_row_builds_contacts_and_row_number():
    row = normalize_row(
        {
            "companyName": "Acme",
            "country": "US",
            "websiteUrl": "https://www.acme.com/",
            "contactFirstName": "Ann",
            "contactEmail": "ANN@acme.com",
            "contactPhone": 5551234567.0,
            "additionalContacts": "Bob, bob@acme.com, 5559876543",
        },
        index=0,
    )

    assert isinstance(row, CanonicalRow)
    assert row.row_number == 2
    assert row.website_normalized == "acme.com"
    assert row.company_key == "acme|acme.com"
    assert [contact.identity_key for contact in row.contacts] == ["ann@acme.com", "bob@acme.com"]
    assert row.contacts[0].phones == ("5551234567",)


def test_normalize_row_returns_empty_marker_for_blank_rows():
    result = normalize_row({"companyName": "", "country": None, "contactEmail": "  "}, index=4)

    assert result is EMPTY_ROW
    assert not result


def test_row_without_contacts_is_still_normalized():
    row = normalize_row({"companyName": "Acme", "country": "", "contactEmail": "broken"}, index=1)

    assert row.row_number == 3
    assert row.contacts == ()
    assert row.partial_values()["company_name"] == "Acme"
