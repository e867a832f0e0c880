from minerkit.util.paths import copy_template, ensure_dir, safe_filename


def test_safe_filename():
    assert safe_filename("foo") == "foo"
    assert safe_filename("apt-get install") == "apt-get_install"
    assert safe_filename("write docker.list") == "write_docker.list"
    assert safe_filename("../../etc/passwd") == "etc_passwd"
    assert safe_filename("") == "item"
    assert safe_filename("", default="cmd") == "cmd"


def test_ensure_dir(tmp_path):
    d = tmp_path / "subdir" / "nested"
    assert not d.exists()
    ensure_dir(d)
    assert d.is_dir()


def test_copy_template_respects_existing(tmp_path):
    dest = tmp_path / "minerkit.yaml"

    assert copy_template("minerkit.yaml", dest) is True
    assert "process_name: subnet27_miner" in dest.read_text(encoding="utf-8")

    dest.write_text("Modified", encoding="utf-8")
    assert copy_template("minerkit.yaml", dest) is False
    assert dest.read_text(encoding="utf-8") == "Modified"

    assert copy_template("minerkit.yaml", dest, overwrite=True) is True
    assert dest.read_text(encoding="utf-8") != "Modified"
