import io

from loxvm.cli import main


def test_runs_file(tmp_path, capsys):
    script = tmp_path / "ok.lox"
    script.write_text('print "from file";\n')
    assert main([str(script)]) == 0
    assert capsys.readouterr().out == "from file\n"


def test_compile_error_exit_code(tmp_path, capsys):
    script = tmp_path / "bad.lox"
    script.write_text("print ;\n")
    assert main([str(script)]) == 65
    assert "Expect expression." in capsys.readouterr().err


def test_runtime_error_exit_code(tmp_path, capsys):
    script = tmp_path / "boom.lox"
    script.write_text("print missing;\n")
    assert main([str(script)]) == 70
    assert "Undefined variable 'missing'." in capsys.readouterr().err


def test_missing_file(tmp_path, capsys):
    path = tmp_path / "absent.lox"
    assert main([str(path)]) == 74
    assert capsys.readouterr().err == f'Could not open file "{path}".\n'


def test_too_many_arguments(capsys):
    assert main(["a.lox", "b.lox"]) == 64
    assert "Usage:" in capsys.readouterr().err


def test_repl_keeps_globals(monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO('var a = "kept";\nprint a;\n'))
    assert main([]) == 0
    assert capsys.readouterr().out == "> > kept\n> \n"


def test_repl_continues_after_error(monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO('print nope;\nprint "after";\n'))
    assert main([]) == 0
    captured = capsys.readouterr()
    assert captured.out == "> > after\n> \n"
    assert "Undefined variable 'nope'." in captured.err