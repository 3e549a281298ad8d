from etl import identity


def test_name_key_ignores_case_punctuation_and_leading_noise():
    assert identity.name_key("0Arsel V.") == "arsel v"
    assert identity.name_key("  arsel   v ") == "arsel v"
    assert identity.name_key("-Arsel V") == "arsel v"
    assert identity.name_key("Arsel V.") == identity.name_key("ARSEL V")


def test_name_key_keeps_distinct_people_apart():
    assert identity.name_key("Arsel V.") != identity.name_key("Arsel B.")
    assert identity.name_key("Jayko C.") != identity.name_key("Jayko")


def test_leading_zero_only_stripped_before_letter():
    assert identity.clean_display_name("0Arsel") == "Arsel"
    assert identity.clean_display_name("007 Runner") == "007 Runner"


def test_resolve_key_prefers_id():
    rec = {"athlete_id": "100", "athlete_name": "Alice A."}
    assert identity.resolve_key(rec) == "100"
    assert identity.resolve_key(rec, prefer_name=True) == "alice a"
    assert identity.resolve_key({"athlete": {"id": 5}}) == "5"
    assert identity.resolve_key({"athlete": {"firstname": "Jayko", "lastname": "C."}}) == "jayko c"
    assert identity.resolve_key({"name": "Morning Run"}) is None
    assert identity.resolve_key(None) is None


def test_member_keys():
    assert identity.member_keys({"id": 100, "firstname": "Alice", "lastname": "A."}) == ["100", "alice a"]
    assert identity.member_keys({"name": "Bob"}) == ["bob"]
    assert identity.member_keys({"athlete": {"id": 3, "firstname": "Cy"}}) == ["3", "cy"]


def test_metadata_lookup_tiers():
    docs = [
        {"id": "name:Arsel V.", "name": "Arsel", "nickname": "Arsel", "goal": 100},
        {"id": "name:Jayko C.", "name": "Jayko C.", "nickname": None, "goal": 0},
        {"id": "200", "name": "Bob Builder", "goal": "50"},
    ]
    index = identity.MetadataIndex(docs, fuzzy_threshold=0)

    # direct: doc id and canonical name key
    assert index.lookup("200")["name"] == "Bob Builder"
    assert index.lookup("jayko c")["id"] == "name:Jayko C."
    # id-derived variant with punctuation stripped
    assert index.lookup("arsel v")["goal"] == 100
    # first-name-only fallback
    assert index.lookup("bob")["id"] == "200"
    assert index.lookup("nobody") is None


def test_metadata_first_registered_wins():
    docs = [
        {"id": "1", "name": "Sam Smith"},
        {"id": "2", "name": "Sam Stone"},
    ]
    index = identity.MetadataIndex(docs, fuzzy_threshold=0)
    assert index.lookup("sam")["id"] == "1"


def test_metadata_fuzzy_fallback():
    index = identity.MetadataIndex([{"id": "9", "name": "Christopher Columbus"}], fuzzy_threshold=90)
    assert index.lookup("christopher columbuss")["id"] == "9"
    assert index.lookup("someone else") is None


def test_nickname_from_longer_id_name():
    index = identity.MetadataIndex([{"id": "name:Arsel Villanueva", "name": "Arsel"}], fuzzy_threshold=0)
    assert index.lookup("arsel")["nickname"] == "Arsel Villanueva"


def test_display_name():
    assert identity.display_name("0Arsel V.", {"nickname": "Arsie"}) == "Arsie"
    assert identity.display_name("0Arsel V.", None) == "Arsel V."
    assert identity.display_name("", None) == "Unknown"


def test_exact_lookup_skips_first_name_and_fuzzy_tiers():
    index = identity.MetadataIndex([{"id": "200", "name": "Bob Builder"}], fuzzy_threshold=90)
    assert index.lookup("bob")["id"] == "200"
    assert index.lookup("bob", loose=False) is None
    assert index.lookup("bob buildr", loose=False) is None
    assert index.lookup("bob builder", loose=False)["id"] == "200"
