"""erpforms.integrations: External collaborator gateways."""
