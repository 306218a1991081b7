import pytest

from zkorch.config import Config, Settings
from zkorch.paths import Project
from zkorch.runner import DryRunRunner
from zkorch.workflow import Orchestrator
from zkorch.workspace import LocalWorkspace

from helpers import TEST_ENV, make_reporter, set_mtime


@pytest.fixture
def nargo_project(tmp_path):
    """A minimal Noir project named `foo`."""
    root = tmp_path / "foo"
    (root / "src").mkdir(parents=True)
    (root / "Nargo.toml").write_text(
        '[package]\nname = "foo"\ntype = "bin"\nauthors = [""]\n\n[dependencies]\n'
    )
    (root / "src" / "main.nr").write_text("fn main(x: Field, y: pub Field) { assert(x != y); }\n")
    (root / "Prover.toml").write_text('x = "1"\ny = "2"\n')
    return root


@pytest.fixture
def project(nargo_project):
    return Project(root=nargo_project, package="foo")


@pytest.fixture
def built_project(project):
    """Project with bytecode and witness newer than all sources."""
    bb_dir = project.root / "target" / "bb"
    bb_dir.mkdir(parents=True)
    for name in ("foo.json", "foo.gz"):
        (bb_dir / name).write_text("{}")
    for source in (project.root / "Nargo.toml", project.root / "Prover.toml", project.root / "src" / "main.nr"):
        set_mtime(source, 1_000_000)
    for name in ("foo.json", "foo.gz"):
        set_mtime(bb_dir / name, 2_000_000)
    return project


@pytest.fixture
def cairo_project(project):
    """Generated Cairo verifier project in contracts/cairo."""
    cairo = project.root / "contracts" / "cairo"
    cairo.mkdir(parents=True)
    (cairo / "Scarb.toml").write_text('[package]\nname = "cairo_verifier"\n')
    return cairo


@pytest.fixture
def recorder():
    return DryRunRunner()


@pytest.fixture
def reporter():
    return make_reporter()


@pytest.fixture
def orchestrator(project, recorder, reporter):
    """Orchestrator recording commands against a real temporary project."""
    return Orchestrator(
        project,
        Config(),
        recorder,
        LocalWorkspace(),
        reporter,
        Settings(),
        dict(TEST_ENV),
    )
