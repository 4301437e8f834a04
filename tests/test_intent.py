from browser_agent.intent import detect, strip_command_prefix


def test_prefix_forces_command():
    result = detect("> anything at all")
    assert result.is_command is True
    assert result.confidence == 1.0


def test_single_category_is_a_command():
    result = detect("go to openai.com")
    assert result.is_command is True
    assert result.confidence == 0.3


def test_chit_chat_is_not_a_command():
    result = detect("hello how are you")
    assert result.is_command is False
    assert result.confidence == 0.0


def test_confidence_counts_categories():
    assert detect("search for cats on google").confidence == 0.6


def test_confidence_is_capped():
    result = detect("open linkedin, search for Ada, click the first result and take a screenshot")
    assert result.confidence == 1.0


def test_strip_command_prefix():
    assert strip_command_prefix(">  go to example.com ") == "go to example.com"
    assert strip_command_prefix("go to example.com") == "go to example.com"
