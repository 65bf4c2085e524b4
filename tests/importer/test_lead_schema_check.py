from leadbook.importer.pipeline.schema_check import ImportConfig, validate_schema


def test_template_headers_are_valid(lead_row):
    result = validate_schema([lead_row(email="a@x.com")])

    assert result.valid
    assert result.errors == ()
    assert result.column_map["companyName"] == "company_name"
    assert result.column_map["contactEmail"] == "contact_email"


def test_empty_upload_is_rejected():
    result = validate_schema([])

    assert not result.valid
    assert "no data rows" in result.errors[0]


def test_missing_company_and_country_columns_are_errors():
    result = validate_schema([{"contactEmail": "a@x.com"}])

    assert not result.valid
    assert any("company name" in error for error in result.errors)
    assert any("country" in error for error in result.errors)


def test_missing_contact_columns_is_an_error():
    result = validate_schema([{"companyName": "Acme", "country": "US"}])

    assert not result.valid
    assert any("No contact columns" in error for error in result.errors)


def test_alias_headers_are_accepted():
    result = validate_schema([{"Agency Name": "Acme", "Country Name": "US", "Email Address": "a@x.com"}])

    assert result.valid
    assert result.column_map == {
        "Agency Name": "company_name",
        "Country Name": "country",
        "Email Address": "contact_email",
    }


def test_unknown_and_competing_columns_only_warn(lead_row):
    row = lead_row(email="a@x.com", company_size="50", company="Acme")
    row["Company Name"] = "Acme Inc"

    result = validate_schema([row])

    assert result.valid
    assert any("company_size" in warning for warning in result.warnings)
    assert any("'company_name'" in warning for warning in result.warnings)


def test_required_email_needs_an_email_column():
    rows = [{"companyName": "Acme", "country": "US", "contactPhone": "5551234567"}]

    assert validate_schema(rows).valid
    result = validate_schema(rows, ImportConfig(require_email=True))
    assert not result.valid
    assert any("Email is required" in error for error in result.errors)


def test_required_phone_accepts_additional_contacts_column():
    rows = [{"companyName": "Acme", "country": "US", "additionalContacts": "Bob, b@x.com, 5551234567"}]

    assert validate_schema(rows, ImportConfig(require_phone=True)).valid


def test_import_config_overrides_ignore_none():
    config = ImportConfig.from_app_config(
        {"IMPORTER_REQUIRE_EMAIL": True, "IMPORTER_REQUIRE_PHONE": False},
        require_email=None,
        require_phone=True,
    )

    assert config == ImportConfig(require_email=True, require_phone=True)
