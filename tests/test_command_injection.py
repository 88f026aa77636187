from postguard.security.detectors.command_injection import CommandInjectionDetector


def test_command_injection_semicolon():
    detector = CommandInjectionDetector()
    payload = "example.com; cat /etc/hosts"
    detected, reason = detector.detect(payload)
    assert detected is True


def test_command_injection_chained():
    detector = CommandInjectionDetector()
    payload = "test && whoami"
    detected, reason = detector.detect(payload)
    assert detected is True


def test_command_injection_substitution():
    detector = CommandInjectionDetector()
    payload = "name=$(uname -a)"
    matched = detector.match(payload)
    assert r"\$\(.*\)" in matched


def test_command_injection_pipe_to_shell():
    detector = CommandInjectionDetector()
    payload = "x | bash -i"
    detected, reason = detector.detect(payload)
    assert detected is True


def test_command_injection_plain_text():
    detector = CommandInjectionDetector()
    payload = "Please send me the March newsletter"
    detected, reason = detector.detect(payload)
    assert detected is False
