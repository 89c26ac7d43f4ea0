from sufrah.phone import is_e164, mask_phone, normalize_phone, to_whatsapp_address


def test_is_e164():
    assert is_e164("+966500000000")
    assert is_e164("+14155238886")
    assert not is_e164("966500000000")
    assert not is_e164("+0966500000")
    assert not is_e164("+9665")
    assert not is_e164("")


def test_normalize_phone_strips_whatsapp_prefix_and_formatting():
    assert normalize_phone("whatsapp:+966508034010") == "+966508034010"
    assert normalize_phone("whatsapp:966508034010") == "+966508034010"
    assert normalize_phone(" +1 (415) 523-8886 ") == "+14155238886"
    assert normalize_phone("") == ""
    assert normalize_phone("whatsapp:") == ""


def test_to_whatsapp_address():
    assert to_whatsapp_address("+966500000000") == "whatsapp:+966500000000"
    assert to_whatsapp_address("966500000000") == "whatsapp:+966500000000"
    assert to_whatsapp_address("") == ""


def test_mask_phone_keeps_last_four():
    assert mask_phone("+966500001234") == "*********1234"
    assert mask_phone("123") == "123"
