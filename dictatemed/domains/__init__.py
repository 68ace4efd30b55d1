"""Business rules, one subpackage per area of the product."""
