"""
easyk8s/bootstrap/scripts.py

Shell scripts sent to cluster nodes during identity convergence and fleet
reconnection.
"""

from __future__ import annotations

import shlex
import textwrap

RKE2_CONFIG = "/etc/rancher/rke2/config.yaml"
RKE2_KUBECONFIG = "/etc/rancher/rke2/rke2.yaml"
RKE2_KUBECTL = "/var/lib/rancher/rke2/bin/kubectl"
RKE2_TLS_DIR = "/var/lib/rancher/rke2/server/tls"


def tls_san_update_script(address: str, *, ready_attempts: int = 60) -> str:
    """Add `address` to the RKE2 tls-san list and regenerate the serving certificate.

    The script is safe to re-run: the SAN is only appended when missing.
    """
    san = shlex.quote(address)
    return textwrap.dedent(
        f"""\
        #!/bin/bash
        set -e
        echo "Backing up RKE2 config..."
        sudo cp {RKE2_CONFIG} {RKE2_CONFIG}.backup
        echo "Adding {address} to TLS SANs..."
        if ! sudo grep -qF -- {san} {RKE2_CONFIG}; then
          if sudo grep -q '^tls-san:' {RKE2_CONFIG}; then
            sudo sed -i '/^tls-san:/a\\  - {address}' {RKE2_CONFIG}
          else
            printf 'tls-san:\\n  - %s\\n' {san} | sudo tee -a {RKE2_CONFIG} >/dev/null
          fi
        fi
        echo "Removing old serving certificate..."
        sudo rm -f {RKE2_TLS_DIR}/serving-kube-apiserver.crt
        sudo rm -f {RKE2_TLS_DIR}/serving-kube-apiserver.key
        echo "Restarting RKE2 to regenerate certificates..."
        sudo systemctl restart rke2-server
        echo "Waiting for RKE2 to be ready..."
        for i in $(seq 1 {ready_attempts}); do
          if sudo {RKE2_KUBECTL} --kubeconfig {RKE2_KUBECONFIG} get nodes >/dev/null 2>&1; then
            echo "RKE2 is ready!"
            break
          fi
          sleep 5
        done
        echo "TLS certificate update complete!"
        """
    )


def agent_restart_script() -> str:
    """Restart the RKE2 agent so the worker reconnects with the new certificates."""
    return "sudo systemctl restart rke2-agent\n"
