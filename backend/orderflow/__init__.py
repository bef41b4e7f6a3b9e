"""Order fulfillment service: order lifecycle, kitchen tickets and recipe-based inventory deduction."""
