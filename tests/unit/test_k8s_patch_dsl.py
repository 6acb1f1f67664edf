"""Tests for K8s Patch DSL operations."""

import pytest

from strata.core.errors import PatchApplyError
from strata.core.schema.patch_dsl import Patch, PatchOp
from strata.k8s.patch_dsl import RESOURCE_PROFILES, apply_k8s_op, apply_k8s_patch
from strata.k8s.utils import find_documents, get_container, load_documents

SAMPLE_MANIFESTS = """apiVersion: apps/v1
kind: Deployment
metadata:
  name: filestore
  labels:
    app: filestore
spec:
  replicas: 1
  selector:
    matchLabels:
      app: filestore
  template:
    metadata:
      labels:
        app: filestore
    spec:
      containers:
      - name: filestore
        image: registry.example.com/filestore/web:1.0.0
        readinessProbe:
          exec:
            command: ["/bin/sh", "-c", "kill -0 1"]
        resources:
          requests:
            cpu: "100m"
            memory: "128Mi"
---
apiVersion: v1
kind: Service
metadata:
  name: filestore
spec:
  selector:
    app: filestore
  ports:
  - port: 8000
---
apiVersion: v1
kind: Namespace
metadata:
  name: filestore
---
apiVersion: rbac.authorization.k8s.io/v1
kind: RoleBinding
metadata:
  name: filestore
roleRef:
  kind: Role
  name: filestore
subjects:
- kind: ServiceAccount
  name: filestore
"""


def _docs():
    return load_documents(SAMPLE_MANIFESTS)


def _deployment(docs):
    return find_documents(docs, "Deployment")[0]


class TestApplyK8sOp:
    """Tests for op dispatch."""

    def test_input_not_mutated(self):
        """Test ops return new documents and leave the input alone."""
        docs = _docs()

        result = apply_k8s_op(docs, PatchOp("EnsureReplicas", {"replicas": 0}))

        assert _deployment(result)["spec"]["replicas"] == 0
        assert _deployment(docs)["spec"]["replicas"] == 1

    def test_unknown_op(self):
        """Test unknown operations raise PatchApplyError."""
        op = PatchOp("EnsureMagic", {})

        with pytest.raises(PatchApplyError, match="Unknown K8s patch operation") as exc_info:
            apply_k8s_op(_docs(), op)
        assert exc_info.value.patch_op is op

    def test_missing_argument(self):
        """Test a missing required argument raises PatchApplyError."""
        with pytest.raises(PatchApplyError, match="missing required argument"):
            apply_k8s_op(_docs(), PatchOp("EnsureNamespace", {}))

    def test_apply_patch_sequential(self):
        """Test a patch applies its ops in order."""
        patch = Patch(ops=[
            PatchOp("EnsureReplicas", {"replicas": 0}),
            PatchOp("EnsureReplicas", {"replicas": 1}),
            PatchOp("EnsureNamespace", {"namespace": "filestore"}),
        ])

        result = apply_k8s_patch(_docs(), patch)

        assert _deployment(result)["spec"]["replicas"] == 1
        assert _deployment(result)["metadata"]["namespace"] == "filestore"


class TestStrategicMergeOp:
    """Tests for StrategicMerge operation."""

    def test_merge(self):
        """Test the patch document is merged into its target."""
        op = PatchOp("StrategicMerge", {"patch": {
            "kind": "Service", "metadata": {"name": "filestore"}, "spec": {"type": "ClusterIP"},
        }})

        result = apply_k8s_op(_docs(), op)

        service = find_documents(result, "Service")[0]
        assert service["spec"]["type"] == "ClusterIP"
        assert service["spec"]["ports"][0]["port"] == 8000


class TestAddResource:
    """Tests for AddResource operation."""

    def test_add(self):
        """Test a new document is appended."""
        pdb = {"apiVersion": "policy/v1", "kind": "PodDisruptionBudget", "metadata": {"name": "filestore"}}

        result = apply_k8s_op(_docs(), PatchOp("AddResource", {"document": pdb}))

        assert len(result) == len(_docs()) + 1
        assert find_documents(result, "PodDisruptionBudget", "filestore")

    def test_duplicate_rejected(self):
        """Test adding an existing kind/name raises."""
        service = {"apiVersion": "v1", "kind": "Service", "metadata": {"name": "filestore"}}

        with pytest.raises(PatchApplyError, match="already exists"):
            apply_k8s_op(_docs(), PatchOp("AddResource", {"document": service}))


class TestEnsureNamespace:
    """Tests for EnsureNamespace operation."""

    def test_namespace_set(self):
        """Test namespaced resources get the namespace, cluster-scoped ones do not."""
        result = apply_k8s_op(_docs(), PatchOp("EnsureNamespace", {"namespace": "files"}))

        assert _deployment(result)["metadata"]["namespace"] == "files"
        assert "namespace" not in find_documents(result, "Namespace")[0]["metadata"]

    def test_binding_subjects_follow(self):
        """Test RoleBinding ServiceAccount subjects follow the namespace."""
        result = apply_k8s_op(_docs(), PatchOp("EnsureNamespace", {"namespace": "files"}))

        binding = find_documents(result, "RoleBinding")[0]
        assert binding["subjects"][0]["namespace"] == "files"


class TestEnsureLabel:
    """Tests for EnsureLabel operation."""

    def test_metadata_scope(self):
        """Test metadata scope only touches resource labels."""
        op = PatchOp("EnsureLabel", {"key": "env", "value": "prod", "scope": "metadata"})

        result = apply_k8s_op(_docs(), op)

        deployment = _deployment(result)
        assert deployment["metadata"]["labels"]["env"] == "prod"
        assert "env" not in deployment["spec"]["template"]["metadata"]["labels"]
        assert "env" not in deployment["spec"]["selector"]["matchLabels"]

    def test_all_scope(self):
        """Test all scope also updates pod templates and selectors."""
        op = PatchOp("EnsureLabel", {"key": "env", "value": "prod"})

        result = apply_k8s_op(_docs(), op)

        deployment = _deployment(result)
        assert deployment["spec"]["template"]["metadata"]["labels"]["env"] == "prod"
        assert deployment["spec"]["selector"]["matchLabels"]["env"] == "prod"
        assert find_documents(result, "Service")[0]["spec"]["selector"]["env"] == "prod"

    def test_unknown_scope(self):
        """Test an unknown scope raises."""
        with pytest.raises(PatchApplyError, match="Unknown label scope"):
            apply_k8s_op(_docs(), PatchOp("EnsureLabel", {"key": "a", "value": "b", "scope": "pods"}))


class TestEnsureImage:
    """Tests for EnsureImage operation."""

    def test_new_tag(self):
        """Test setting a new tag on a matching image."""
        op = PatchOp("EnsureImage", {"name": "registry.example.com/filestore/web", "new_tag": "1.8.0"})

        result = apply_k8s_op(_docs(), op)

        assert get_container(_deployment(result))["image"] == "registry.example.com/filestore/web:1.8.0"

    def test_new_name_keeps_tag(self):
        """Test renaming an image keeps its tag."""
        op = PatchOp("EnsureImage", {"name": "registry.example.com/filestore/web",
                                     "new_name": "mirror.local/filestore/web"})

        result = apply_k8s_op(_docs(), op)

        assert get_container(_deployment(result))["image"] == "mirror.local/filestore/web:1.0.0"

    def test_digest(self):
        """Test pinning by digest."""
        op = PatchOp("EnsureImage", {"name": "registry.example.com/filestore/web", "digest": "sha256:abc"})

        result = apply_k8s_op(_docs(), op)

        assert get_container(_deployment(result))["image"] == "registry.example.com/filestore/web@sha256:abc"

    def test_non_matching_untouched(self):
        """Test images with a different name are left alone."""
        op = PatchOp("EnsureImage", {"name": "other/web", "new_tag": "9"})

        result = apply_k8s_op(_docs(), op)

        assert get_container(_deployment(result))["image"] == "registry.example.com/filestore/web:1.0.0"


class TestEnsureReplicas:
    """Tests for EnsureReplicas operation."""

    def test_named_workload(self):
        """Test setting replicas on a named workload."""
        result = apply_k8s_op(_docs(), PatchOp("EnsureReplicas", {"name": "filestore", "replicas": 2}))

        assert _deployment(result)["spec"]["replicas"] == 2

    def test_unknown_workload(self):
        """Test a replica override for a missing workload raises."""
        with pytest.raises(PatchApplyError, match="No workload named"):
            apply_k8s_op(_docs(), PatchOp("EnsureReplicas", {"name": "other", "replicas": 1}))

    @pytest.mark.parametrize("value", [-1, "2", 1.5, True])
    def test_invalid_value(self, value):
        """Test non-integer or negative replica counts are rejected."""
        with pytest.raises(PatchApplyError, match="non-negative integer"):
            apply_k8s_op(_docs(), PatchOp("EnsureReplicas", {"replicas": value}))


class TestEnsureProbe:
    """Tests for EnsureProbe operation."""

    def test_replaces_probe(self, caplog):
        """Test the probe is replaced and a handler switch is logged."""
        spec = {"httpGet": {"path": "/health", "port": 8000}, "periodSeconds": 10}
        op = PatchOp("EnsureProbe", {"probe": "readiness", "spec": spec, "container": "filestore"})

        with caplog.at_level("INFO", logger="strata.k8s.patch_dsl"):
            result = apply_k8s_op(_docs(), op)

        probe = get_container(_deployment(result))["readinessProbe"]
        assert "exec" not in probe
        assert probe["httpGet"]["path"] == "/health"
        assert "switched from exec to httpGet" in caplog.text

    def test_adds_missing_probe(self):
        """Test a probe is added when the container has none."""
        spec = {"exec": {"command": ["true"]}}

        result = apply_k8s_op(_docs(), PatchOp("EnsureProbe", {"probe": "liveness", "spec": spec}))

        assert get_container(_deployment(result))["livenessProbe"]["exec"]["command"] == ["true"]

    def test_unknown_probe_type(self):
        """Test an unknown probe type raises."""
        with pytest.raises(PatchApplyError, match="Unknown probe type"):
            apply_k8s_op(_docs(), PatchOp("EnsureProbe", {"probe": "warmup", "spec": {}}))

    def test_unknown_container(self):
        """Test a missing container raises."""
        op = PatchOp("EnsureProbe", {"probe": "readiness", "spec": {}, "container": "ghost"})

        with pytest.raises(PatchApplyError, match="No workload container"):
            apply_k8s_op(_docs(), op)


class TestEnsureRollingUpdate:
    """Tests for EnsureRollingUpdate operation."""

    def test_sets_strategy(self):
        """Test the rolling update parameters are set."""
        op = PatchOp("EnsureRollingUpdate", {"max_unavailable": 0, "max_surge": 1})

        result = apply_k8s_op(_docs(), op)

        strategy = _deployment(result)["spec"]["strategy"]
        assert strategy["type"] == "RollingUpdate"
        assert strategy["rollingUpdate"] == {"maxUnavailable": 0, "maxSurge": 1}

    def test_both_zero_rejected(self):
        """Test a rollout that can never progress is rejected."""
        with pytest.raises(PatchApplyError, match="cannot both be zero"):
            apply_k8s_op(_docs(), PatchOp("EnsureRollingUpdate", {"max_unavailable": 0, "max_surge": 0}))


class TestEnsureDisruptionBudget:
    """Tests for EnsureDisruptionBudget operation."""

    def test_creates_budget(self):
        """Test a PDB selecting the workload is created."""
        result = apply_k8s_op(_docs(), PatchOp("EnsureDisruptionBudget", {"min_available": 1}))

        pdb = find_documents(result, "PodDisruptionBudget", "filestore-pdb")[0]
        assert pdb["apiVersion"] == "policy/v1"
        assert pdb["spec"]["minAvailable"] == 1
        assert pdb["spec"]["selector"]["matchLabels"] == {"app": "filestore"}

    def test_updates_existing_budget(self):
        """Test a matching PDB is updated instead of duplicated."""
        docs = apply_k8s_op(_docs(), PatchOp("AddResource", {"document": {
            "apiVersion": "policy/v1",
            "kind": "PodDisruptionBudget",
            "metadata": {"name": "filestore"},
            "spec": {"maxUnavailable": 1, "selector": {"matchLabels": {"app": "filestore"}}},
        }}))

        result = apply_k8s_op(docs, PatchOp("EnsureDisruptionBudget", {"min_available": 1}))

        budgets = find_documents(result, "PodDisruptionBudget")
        assert len(budgets) == 1
        assert budgets[0]["spec"]["minAvailable"] == 1
        assert "maxUnavailable" not in budgets[0]["spec"]


class TestEnsureSecurityBaseline:
    """Tests for EnsureSecurityBaseline operation."""

    def test_baseline(self):
        """Test the container gets the non-root, no-capability baseline."""
        result = apply_k8s_op(_docs(), PatchOp("EnsureSecurityBaseline", {}))

        ctx = get_container(_deployment(result))["securityContext"]
        assert ctx["runAsNonRoot"] is True
        assert ctx["runAsUser"] == 10001
        assert ctx["allowPrivilegeEscalation"] is False
        assert ctx["capabilities"] == {"drop": ["ALL"]}

    def test_root_rejected(self):
        """Test UID 0 is rejected."""
        with pytest.raises(PatchApplyError, match="UID 0"):
            apply_k8s_op(_docs(), PatchOp("EnsureSecurityBaseline", {"run_as_user": 0}))


class TestEnsureResourceProfile:
    """Tests for EnsureResourceProfile operation."""

    def test_profiles(self):
        """Test each profile sets requests and limits."""
        for profile, spec in RESOURCE_PROFILES.items():
            result = apply_k8s_op(_docs(), PatchOp("EnsureResourceProfile", {"profile": profile}))

            assert get_container(_deployment(result))["resources"] == spec

    def test_unknown_profile(self):
        """Test an unknown profile raises."""
        with pytest.raises(PatchApplyError, match="Unknown resource profile"):
            apply_k8s_op(_docs(), PatchOp("EnsureResourceProfile", {"profile": "huge"}))
