"""HTTP surface for iotledger."""
