# tests/test_actions.py
from tablecraft.compiler.actions import (
    ActionResolver, RouteInfo, canonical_verb, parse_button_spec, resolve_base_path, strip_action_segment,
)


def names(buttons):
    return [button.name for button in buttons]


def test_removed_verbs_leave_view_and_edit():
    buttons = ActionResolver().resolve(removed_verbs=["delete", "insert"])
    assert names(buttons) == ["view", "edit"]


def test_removed_synonyms_are_canonicalized():
    buttons = ActionResolver().resolve(removed_verbs=["destroy", "create"])
    assert names(buttons) == ["view", "edit"]


def test_custom_button_renders_class_and_icon():
    resolver = ActionResolver()
    buttons = resolver.resolve(custom_button_specs=["approve|success|check"])
    html = resolver.render(buttons, {"id": 7}, "/admin/orders")
    assert "btn-approve" in html
    assert "fa fa-check" in html
    assert 'href="/admin/orders/7/approve"' in html


def test_parse_button_spec_forms():
    assert names(parse_button_spec(True)) == ["view", "edit", "delete"]
    assert parse_button_spec(False) == []
    bare = parse_button_spec("export")[0]
    assert (bare.name, bare.color, bare.icon, bare.custom) == ("export", "default", "link", True)
    styled = parse_button_spec("update|info|pen")[0]
    assert (styled.name, styled.color, styled.icon, styled.custom) == ("edit", "info", "pen", False)


def test_canonical_verb():
    assert canonical_verb("Show") == "view"
    assert canonical_verb("store") == "insert"
    assert canonical_verb("approve") is None


def test_privileges_filter_verbs_and_add_customs():
    roles = ["admin.orders.index", "admin.orders.edit", "admin.orders.approve", "admin.users.delete"]
    buttons = ActionResolver().resolve(roles, route_name="admin.orders.index", role_group=2)
    assert names(buttons) == ["view", "edit", "approve"]
    assert buttons[-1].custom


def test_privileges_ignored_for_root_group():
    roles = ["admin.orders.index"]
    buttons = ActionResolver().resolve(roles, route_name="admin.orders.index", role_group=1)
    assert names(buttons) == ["view", "insert", "edit", "delete"]


def test_privileges_ignored_when_route_not_granted():
    buttons = ActionResolver().resolve(["admin.users.index"], route_name="admin.orders.index", role_group=3)
    assert names(buttons) == ["view", "insert", "edit", "delete"]


def test_render_skips_insert_and_builds_hrefs():
    resolver = ActionResolver()
    html = resolver.render(resolver.resolve(), {"id": 3}, "/admin/orders/")
    assert html.startswith('<div class="action-buttons-box"><div class="hidden-sm hidden-xs action-buttons">')
    assert 'href="/admin/orders/3/view"' in html
    assert 'href="/admin/orders/3/edit"' in html
    assert 'href="/admin/orders/3/delete"' in html
    assert "/insert" not in html


def test_soft_deleted_row_offers_restore():
    resolver = ActionResolver()
    html = resolver.render(resolver.resolve(), {"id": 3, "deleted_at": "2024-01-01"}, "/admin/orders")
    assert 'href="/admin/orders/3/restore_deleted"' in html
    assert "fa fa-recycle" in html
    assert 'href="/admin/orders/3/edit"' not in html
    assert "disabled" in html


def test_url_target_field():
    resolver = ActionResolver()
    html = resolver.render(resolver.resolve(removed_verbs=["edit", "delete"]), {"id": 3, "slug": "abc"},
                           "/shop", url_target_field="slug")
    assert 'href="/shop/abc/view"' in html


def test_strip_action_segment():
    assert strip_action_segment("/admin/orders/index") == "/admin/orders"
    assert strip_action_segment("/admin/orders/") == "/admin/orders"
    assert strip_action_segment("") is None


def test_base_path_fallback_chain():
    assert resolve_base_path(RouteInfo(referrer="http://host/admin/orders/index?x=1")) == "/admin/orders"
    assert resolve_base_path(RouteInfo(route_uri="admin/orders/create")) == "/admin/orders"
    assert resolve_base_path(RouteInfo(route_name="admin.orders.index")) == "/admin/orders"
    assert resolve_base_path(RouteInfo(request_path="/orders/show")) == "/orders"
    assert resolve_base_path(RouteInfo()) == ""


def test_diagnostics_reports_verbs():
    resolver = ActionResolver()
    resolver.resolve(removed_verbs=["insert"], custom_button_specs=["export"])
    facts = resolver.diagnostics()
    assert facts["verbs"] == ["view", "edit", "delete"]
    assert facts["custom"] == ["export"]


def test_custom_button_survives_removal_of_same_name():
    buttons = ActionResolver().resolve(removed_verbs=["approve", "delete"], custom_button_specs=["approve|success|check"])
    assert names(buttons) == ["view", "insert", "edit", "approve"]
    assert buttons[-1].icon == "check"
