# OpsDesk - HTTP API
