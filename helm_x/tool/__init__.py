"""Command line tool for turning manifests, kustomizations and charts into helm releases."""
