"""
命令行入口的端到端测试：click.testing.CliRunner 直接调用，不启动子进程。
"""

from pathlib import Path

from click.testing import CliRunner

from src.cert.main import main


def test_create_then_ls(tmp_path: Path):
    """create 之后 ls 显示节点证书的主机与 CA 校验结果"""
    directory = tmp_path / "t"
    runner = CliRunner()

    result = runner.invoke(
        main, ["create", f"--dir={directory}", "--nodes=host1,host2,127.0.0.1"]
    )
    assert result.exit_code == 0, result.output
    assert f"created: {directory / 'node.crt'}" in result.output
    assert f"verified: {directory / 'node.crt'}" in result.output

    result = runner.invoke(main, ["ls", f"--dir={directory}"])
    assert result.exit_code == 0, result.output
    assert "node.crt - Autumn Node" in result.output
    assert "Hosts: host1, host2, 127.0.0.1" in result.output
    assert "CA Verify: OK" in result.output
    assert "SHA-256 Digest: " in result.output
    assert "error" not in result.output


def test_create_twice_reports_skipped(tmp_path: Path):
    directory = tmp_path / "t"
    runner = CliRunner()
    args = ["create", "-d", str(directory), "-n", "host1", "-c", "alice"]

    assert runner.invoke(main, args).exit_code == 0
    result = runner.invoke(main, args)
    assert result.exit_code == 0, result.output
    assert f"skipped (exists): {directory / 'client.alice.crt'}" in result.output
    assert "created:" not in result.output


def test_create_bad_ca_key_exits_non_zero(tmp_path: Path):
    directory = tmp_path / "t"
    directory.mkdir()
    (directory / "ca.key").write_text("garbage")

    result = CliRunner().invoke(main, ["create", "-d", str(directory), "-n", "host1"])
    assert result.exit_code == 1
    assert "无法解析私钥" in result.output


def test_create_rejects_small_key_size(tmp_path: Path):
    result = CliRunner().invoke(main, ["create", "-d", str(tmp_path / "t"), "-r", "512"])
    assert result.exit_code == 1
    assert not (tmp_path / "t").exists()


def test_ls_empty_directory(tmp_path: Path):
    result = CliRunner().invoke(main, ["ls", "-d", str(tmp_path)])
    assert result.exit_code == 0
    assert f"Directory is empty: {tmp_path}" in result.output


def test_ls_missing_directory(tmp_path: Path):
    result = CliRunner().invoke(main, ["ls", "-d", str(tmp_path / "missing")])
    assert result.exit_code == 1


def test_ls_reports_unsupported_file(tmp_path: Path):
    (tmp_path / "notes.txt").write_text("hello")
    result = CliRunner().invoke(main, ["ls", "-d", str(tmp_path)])
    assert result.exit_code == 0
    assert "notes.txt: error: unsupported file" in result.output


def test_create_prints_warnings(tmp_path: Path):
    """被跳过的无效主机以警告形式输出到 stderr"""
    directory = tmp_path / "t"
    result = CliRunner().invoke(main, ["create", "-d", str(directory), "-n", "host1,bad!host"])
    assert result.exit_code == 0, result.output
    assert "warning: " in result.output
    assert "bad!host" in result.output


def test_create_missing_ca_key_exits_non_zero(tmp_path: Path):
    directory = tmp_path / "t"
    runner = CliRunner()
    assert runner.invoke(main, ["create", "-d", str(directory)]).exit_code == 0
    (directory / "ca.key").unlink()

    result = runner.invoke(main, ["create", "-d", str(directory), "-n", "host1"])
    assert result.exit_code == 1
    assert "CA key missing for existing ca.crt" in result.output
    assert not (directory / "ca.key").exists()
