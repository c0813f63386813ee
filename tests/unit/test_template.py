from nexflow.template import get_deep_value, interpolate, interpolate_json_payload

RESULTS = {
    "price": {
        "status": 200,
        "body": {
            "bitcoin": {"usd": 42000.5},
            "active": True,
            "tags": ["btc", "crypto"],
            "items": [{"name": "first"}, {"name": "second"}],
            "empty": None,
        },
    }
}


def test_interpolates_nested_value():
    assert interpolate("BTC: ${price.body.bitcoin.usd}", RESULTS) == "BTC: 42000.5"


def test_missing_path_renders_marker():
    assert interpolate("Value: ${x.y}", {}) == "Value: [missing x.y]"


def test_template_without_placeholders_is_unchanged():
    assert interpolate("plain text", RESULTS) == "plain text"


def test_empty_or_absent_template_yields_empty_string():
    assert interpolate("", RESULTS) == ""
    assert interpolate(None, RESULTS) == ""


def test_expression_whitespace_is_trimmed():
    assert interpolate("${ price.status }", RESULTS) == "200"


def test_null_value_is_treated_as_missing():
    assert interpolate("${price.body.empty}", RESULTS) == "[missing price.body.empty]"


def test_structured_values_render_as_compact_json():
    assert interpolate("${price.body.tags}", RESULTS) == '["btc","crypto"]'
    assert interpolate("${price.body.bitcoin}", RESULTS) == '{"usd":42000.5}'


def test_booleans_render_lowercase():
    assert interpolate("active=${price.body.active}", RESULTS) == "active=true"


def test_list_index_segments():
    assert get_deep_value(RESULTS, "price.body.items.1.name") == "second"
    assert get_deep_value(RESULTS, "price.body.items.5.name") is None


def test_multiple_placeholders():
    assert (
        interpolate("${price.status} ${price.body.tags.0} ${nope}", RESULTS)
        == "200 btc [missing nope]"
    )


def test_json_payload_numbers_stay_numeric():
    raw = '{"price": ${price.body.bitcoin.usd}, "coin": "${price.body.tags.0}"}'
    assert interpolate_json_payload(raw, RESULTS) == '{"price": 42000.5, "coin": "btc"}'
