from kiosk.models.restaurant import Restaurant
from kiosk.models.menu_item import MenuItem
from kiosk.models.option_group import OptionChoice, OptionGroup
from kiosk.models.topping_group import Topping, ToppingGroup
from kiosk.models.order import KioskOrder
from kiosk.models.payment_intent import PaymentIntent
from kiosk.models.api_key import RestaurantApiKey
