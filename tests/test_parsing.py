from aether.parsing import Invalid, Parsed, Raw, parse_json_object, parse_model_output


def test_direct_json():
    assert parse_model_output('{"command": "ls"}') == Parsed({"command": "ls"})


def test_fenced_json():
    text = 'Here you go:\n```json\n{"tool": "execute_bash"}\n```'
    assert parse_model_output(text) == Parsed({"tool": "execute_bash"})


def test_embedded_object_in_prose():
    text = 'Decision: {"tool": null, "is_complete": true} hope that helps'
    assert parse_model_output(text) == Parsed({"tool": None, "is_complete": True})


def test_raw_fallback():
    assert parse_model_output("  ls -F /tmp  ") == Raw("ls -F /tmp")


def test_raw_disallowed_is_invalid():
    assert isinstance(parse_model_output("ls -F", allow_raw=False), Invalid)


def test_empty_is_invalid():
    assert isinstance(parse_model_output(""), Invalid)
    assert isinstance(parse_model_output("   \n"), Invalid)


def test_json_object_rejects_arrays():
    result = parse_json_object("[1, 2]")
    assert isinstance(result, Invalid)
    assert "list" in result.reason


def test_braces_in_shell_text_stay_raw():
    assert parse_model_output("awk '{print $1}' data.txt") == Raw("awk '{print $1}' data.txt")


def test_json_inside_shell_text_is_not_extracted():
    text = """curl -X POST -d '{"command": "reboot"}' http://localhost:8080/api"""
    assert parse_model_output(text, embedded=False) == Raw(text)
    assert parse_model_output('```json\n{"command": "ls"}\n```', embedded=False) == Parsed({"command": "ls"})
