from redgreen.tdd.patches import (
    FilePatch,
    TestArtifact,
    apply_patches,
    revert_files,
    snapshot_files,
    write_test_file,
)
from redgreen.tdd.runner import CommandTestRunner, ScopedRun, SuiteRun, TestRunner
from redgreen.tdd.verify import (
    GreenResult,
    RedResult,
    RegressionResult,
    check_regression,
    verify_green,
    verify_red,
)

__all__ = [
    "CommandTestRunner",
    "FilePatch",
    "GreenResult",
    "RedResult",
    "RegressionResult",
    "ScopedRun",
    "SuiteRun",
    "TestArtifact",
    "TestRunner",
    "apply_patches",
    "check_regression",
    "revert_files",
    "snapshot_files",
    "verify_green",
    "verify_red",
    "write_test_file",
]
