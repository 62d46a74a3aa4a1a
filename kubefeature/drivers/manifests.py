"""Bundled manifests for backing workloads.

Each manifest is pinned at ``replicas: 1``; drivers rewrite the replica
count before applying.
"""

from __future__ import annotations

KYVERNO_NAMESPACE = "kyverno"
KYVERNO_DEPLOYMENT = "kyverno"

KYVERNO_YAML = """\
apiVersion: v1
kind: Namespace
metadata:
  name: kyverno
---
apiVersion: v1
kind: ServiceAccount
metadata:
  name: kyverno
  namespace: kyverno
---
apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRoleBinding
metadata:
  name: kyverno
roleRef:
  apiGroup: rbac.authorization.k8s.io
  kind: ClusterRole
  name: cluster-admin
subjects:
- kind: ServiceAccount
  name: kyverno
  namespace: kyverno
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: kyverno
  namespace: kyverno
  labels:
    app.kubernetes.io/name: kyverno
spec:
  replicas: 1
  selector:
    matchLabels:
      app.kubernetes.io/name: kyverno
  template:
    metadata:
      labels:
        app.kubernetes.io/name: kyverno
    spec:
      serviceAccountName: kyverno
      containers:
      - name: kyverno
        image: ghcr.io/kyverno/kyverno:v1.10.0
        args:
        - --autogenInternals=true
        ports:
        - containerPort: 9443
          name: https
        readinessProbe:
          httpGet:
            path: /health/readiness
            port: 9443
            scheme: HTTPS
"""

PROMETHEUS_NAMESPACE = "monitoring"
PROMETHEUS_OPERATOR_DEPLOYMENT = "prometheus-operator"

PROMETHEUS_OPERATOR_YAML = """\
apiVersion: v1
kind: Namespace
metadata:
  name: monitoring
---
apiVersion: v1
kind: ServiceAccount
metadata:
  name: prometheus-operator
  namespace: monitoring
---
apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRoleBinding
metadata:
  name: prometheus-operator
roleRef:
  apiGroup: rbac.authorization.k8s.io
  kind: ClusterRole
  name: cluster-admin
subjects:
- kind: ServiceAccount
  name: prometheus-operator
  namespace: monitoring
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: prometheus-operator
  namespace: monitoring
  labels:
    app.kubernetes.io/name: prometheus-operator
spec:
  replicas: 1
  selector:
    matchLabels:
      app.kubernetes.io/name: prometheus-operator
  template:
    metadata:
      labels:
        app.kubernetes.io/name: prometheus-operator
    spec:
      serviceAccountName: prometheus-operator
      containers:
      - name: prometheus-operator
        image: quay.io/prometheus-operator/prometheus-operator:v0.65.1
        args:
        - --kubelet-service=kube-system/kubelet
        ports:
        - containerPort: 8080
          name: http
"""

KUBE_STATE_METRICS_YAML = """\
apiVersion: v1
kind: ServiceAccount
metadata:
  name: kube-state-metrics
  namespace: monitoring
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: kube-state-metrics
  namespace: monitoring
  labels:
    app.kubernetes.io/name: kube-state-metrics
spec:
  replicas: 1
  selector:
    matchLabels:
      app.kubernetes.io/name: kube-state-metrics
  template:
    metadata:
      labels:
        app.kubernetes.io/name: kube-state-metrics
    spec:
      serviceAccountName: kube-state-metrics
      containers:
      - name: kube-state-metrics
        image: registry.k8s.io/kube-state-metrics/kube-state-metrics:v2.9.2
        ports:
        - containerPort: 8080
          name: http-metrics
---
apiVersion: v1
kind: Service
metadata:
  name: kube-state-metrics
  namespace: monitoring
  labels:
    app.kubernetes.io/name: kube-state-metrics
spec:
  selector:
    app.kubernetes.io/name: kube-state-metrics
  ports:
  - name: http-metrics
    port: 8080
    targetPort: http-metrics
---
apiVersion: monitoring.coreos.com/v1
kind: ServiceMonitor
metadata:
  name: kube-state-metrics
  namespace: monitoring
spec:
  selector:
    matchLabels:
      app.kubernetes.io/name: kube-state-metrics
  endpoints:
  - port: http-metrics
"""


def change_replicas(content: str, replicas: int) -> str:
    """Rewrite the pinned ``replicas: 1`` of a bundled manifest."""
    pinned = "replicas: 1"
    if pinned not in content:
        raise ValueError("bundled manifest has no pinned replica count")
    return content.replace(pinned, f"replicas: {replicas}")
