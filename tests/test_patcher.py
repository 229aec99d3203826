from hostprep.patcher import ConfigDocument, Dialect, ManagedSetting, parse_line, patch_text, settings_from_pairs

SSHD = Dialect.SPACE_DIRECTIVE
INI = Dialect.INI_EQUALS


def test_port_replaced_once():
    result = patch_text("Port 22\nPermitRootLogin no\n", SSHD, [ManagedSetting("Port", "2222")])
    assert result == "PermitRootLogin no\nPort 2222\n"


def test_new_keys_appended_in_given_order():
    result = patch_text(
        "# comment\n",
        INI,
        settings_from_pairs([("net.core.default_qdisc", "fq"), ("net.ipv4.tcp_congestion_control", "bbr")]),
    )
    assert result == "# comment\nnet.core.default_qdisc=fq\nnet.ipv4.tcp_congestion_control=bbr\n"


def test_patch_is_idempotent():
    settings = settings_from_pairs([("Port", "2222"), ("MaxAuthTries", "6")])
    once = patch_text("#Port 22\nUsePAM yes\nMaxAuthTries 3\n", SSHD, settings)
    assert patch_text(once, SSHD, settings) == once


def test_each_managed_key_appears_exactly_once():
    text = "Port 22\n#Port 23\nport 24\nPort=25\nX11Forwarding yes\n"
    result = patch_text(text, SSHD, [ManagedSetting("Port", "2222")])
    active = [line for line in result.splitlines() if line.lower().startswith("port")]
    assert active == ["Port 2222"]
    assert "X11Forwarding yes" in result


def test_commented_prose_is_kept():
    text = "# Port forwarding is disabled below\n#Port 22\n"
    result = patch_text(text, SSHD, [ManagedSetting("Port", "2222")])
    assert result == "# Port forwarding is disabled below\nPort 2222\n"


def test_unrelated_lines_keep_their_order():
    text = "A 1\nB 2\nPort 22\nC 3\n"
    result = patch_text(text, SSHD, [ManagedSetting("Port", "2222")])
    assert result.splitlines()[:3] == ["A 1", "B 2", "C 3"]


def test_settings_go_before_match_block():
    text = "Port 22\nMatch User backup\n    PasswordAuthentication yes\n"
    result = patch_text(text, SSHD, [ManagedSetting("PasswordAuthentication", "no")])
    assert result == (
        "Port 22\nPasswordAuthentication no\nMatch User backup\n    PasswordAuthentication yes\n"
    )


def test_get_ignores_match_block_and_comments():
    doc = ConfigDocument.parse("#Port 1\nPort 22\nMatch all\nPort 99\n", SSHD)
    assert doc.get("port") == "22"


def test_get_missing_key():
    assert ConfigDocument.parse("", INI).get("net.ipv4.tcp_congestion_control") is None


def test_ini_keys_are_case_sensitive():
    result = patch_text("Net.Core.Default_Qdisc=pfifo\n", INI, [ManagedSetting("net.core.default_qdisc", "fq")])
    assert result == "Net.Core.Default_Qdisc=pfifo\nnet.core.default_qdisc=fq\n"


def test_ini_commented_occurrence_removed():
    result = patch_text(
        "# net.ipv4.tcp_congestion_control = cubic\n", INI, [ManagedSetting("net.ipv4.tcp_congestion_control", "bbr")]
    )
    assert result == "net.ipv4.tcp_congestion_control=bbr\n"


def test_duplicate_settings_last_value_wins():
    result = patch_text("", SSHD, [ManagedSetting("Port", "1"), ManagedSetting("port", "2")])
    assert result == "port 2\n"


def test_systemd_dialect():
    text = "[Socket]\n;ListenStream=22\nListenStream=[::]:22\n"
    doc = ConfigDocument.parse(text, Dialect.SYSTEMD_DROPIN)
    assert doc.get("ListenStream") == "[::]:22"
    result = doc.apply([ManagedSetting("ListenStream", "2222")]).render()
    assert result == "[Socket]\nListenStream=2222\n"


def test_empty_document_renders_empty():
    assert ConfigDocument.parse("", SSHD).render() == ""


def test_parse_line_equals_form_in_sshd():
    line = parse_line("  PasswordAuthentication = no", SSHD)
    assert (line.key, line.value, line.commented) == ("PasswordAuthentication", "no", False)


def test_render_by_dialect():
    setting = ManagedSetting("Port", "2222")
    assert setting.render(SSHD) == "Port 2222"
    assert setting.render(INI) == "Port=2222"


def test_form_feed_and_line_separator_stay_inside_their_line():
    text = "# section\x0c one\n# note\u2028more\nPort 22\n"
    result = patch_text(text, SSHD, [ManagedSetting("Port", "2222")])
    assert result == "# section\x0c one\n# note\u2028more\nPort 2222\n"


def test_crlf_lines_kept_and_new_lines_follow_them():
    text = "UsePAM yes\r\nPort 22\r\n"
    result = patch_text(text, SSHD, [ManagedSetting("Port", "2222")])
    assert result == "UsePAM yes\r\nPort 2222\r\n"
    assert ConfigDocument.parse(result, SSHD).get("Port") == "2222"
    assert patch_text(result, SSHD, [ManagedSetting("Port", "2222")]) == result
